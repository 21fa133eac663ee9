"""
加密货币行情问答服务
独立的行情数据微服务，通过规则匹配回答自然语言行情问题，并提供 HTTP 接口

架构分层：
  数据获取层 (Acquisition)  → 从 CoinGecko 拉取行情、历史与币种索引
  缓存层     (Cache)        → Redis 旁路缓存（不可用时降级为直通）
  处理层     (Processing)   → 行情数据清洗、标准化、趋势计算
  服务层     (Services)     → 问题分类 → 数据解析 → 回答生成
"""

__version__ = "1.0.0"
