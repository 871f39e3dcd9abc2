"""导入流程的领域异常。

分级：
- 文件级 / 列级（FileError、ColumnError）：在处理任何数据行之前抛出，整次导入中止；
- 行级（RowValidationError、PersistenceError）：在行循环内捕获，转换为 RowError 后继续；
- 基础设施（InfrastructureError）：数据库不可用等，整次请求失败。
"""

from __future__ import annotations


class ImportFailure(Exception):
    """导入相关异常基类。"""

    code = "import_failure"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class FileError(ImportFailure):
    """文件无法识别或解析（格式不支持、损坏、无数据行）。"""

    code = "file_error"


class ColumnError(ImportFailure):
    """缺少必填列。

    Attributes:
        missing: 缺失的规范字段名（按配置顺序）。
        found: 文件中实际出现的表头。
        expected: 缺失字段的首选列名（用于提示运营人员）。
    """

    code = "column_error"

    def __init__(
        self,
        missing: list[str],
        found: list[str],
        expected: list[str] | None = None,
    ) -> None:
        self.missing = list(missing)
        self.found = list(found)
        self.expected = list(expected or missing)
        message = (
            f"缺少必填列：{', '.join(self.expected)}。"
            f"文件中的表头为：{', '.join(self.found) or '（无）'}"
        )
        super().__init__(message)


class RowValidationError(ImportFailure):
    """单行字段校验失败（行级，可恢复）。"""

    code = "row_validation"

    def __init__(self, field: str, value: object, message: str) -> None:
        super().__init__(message)
        self.field = field
        self.value = value


class PersistenceError(ImportFailure):
    """单条记录写入失败（约束冲突等，行级，可恢复）。"""

    code = "persistence_error"


class InfrastructureError(ImportFailure):
    """数据库不可用等基础设施故障（致命）。"""

    code = "infrastructure_error"
