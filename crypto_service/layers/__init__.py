"""
数据流分层架构
  Layer 1 – Acquisition  : 数据获取（CoinGecko）
  Layer 2 – Cache        : Redis 旁路缓存
  Layer 3 – Processing   : 数据清洗与标准化
"""
