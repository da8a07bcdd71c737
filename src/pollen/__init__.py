"""Pollen: 订阅源同步与对账引擎."""

__version__ = "0.1.0"
