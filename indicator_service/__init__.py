"""
市场指标数据服务
独立的指标获取与缓存微服务，提供 HTTP 接口

架构分层：
  缓存层     (Cache)        → 进程内 TTL 缓存 + 请求合并（single-flight）+ 最后可用值（LKG）
  路由层     (Routing)      → 逻辑代码 → 数据提供商的静态映射表
  获取层     (Acquisition)  → 各数据提供商适配器（Stooq / FRED / Alpha Vantage）
  处理层     (Processing)   → 报价标准化（涨跌额、涨跌幅统一重算）
  衍生层     (Derived)      → 比值 / 利差类衍生指标
  聚合服务   (MarketService)→ 并发拉取全部代码、合并能力信息与告警、整批缓存
"""

__version__ = "1.0.0"
