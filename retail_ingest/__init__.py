"""retail-ingest：服装零售看板的批量导入与重复导入检测。

分层：
- core：领域模型、导入类型配置、归一化 / 列解析 / 行校验规则（纯函数）；
- data：SQLite 连接与仓储；
- flows：业务流程（文件解析、批量导入、重复检测、导入历史）；
- app：依赖装配与 HTTP 入口；
- cli：命令行入口。
"""

__version__ = "0.3.0"
