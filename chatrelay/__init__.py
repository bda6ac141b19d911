"""
chatrelay - 将聊天事件转发到后端服务的中继机器人
"""

__version__ = "0.1.0"
__logo__ = "🔁"
