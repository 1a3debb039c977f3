"""
数据提供商适配器
  Stooq         : 美股 ETF / 板块 ETF 报价（CSV，无需 Key）
  FRED          : VIX 与美债收益率序列（JSON，需要 FRED_API_KEY）
  Alpha Vantage : GLOBAL_QUOTE 报价（JSON，需要 ALPHAVANTAGE_API_KEY，免费额度极低）
"""
