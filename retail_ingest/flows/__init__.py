"""业务流程层。

流程函数以关键字参数接收仓储（由 app.wiring.DependencyContainer 构造并注入），
自身不持有连接，也不读取全局状态。
"""
