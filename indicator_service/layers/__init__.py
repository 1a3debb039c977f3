"""
数据流分层架构
  Cache       : 进程内 TTL 缓存（single-flight + LKG）
  Routing     : 逻辑代码 → 数据提供商路由表
  HTTP        : 带超时 / 退避重试的请求封装
  Processing  : 报价标准化
  Acquisition : 数据提供商适配器调度
  Derived     : 比值 / 利差衍生指标
"""
