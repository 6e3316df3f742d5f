"""共享配置文件的持久化原语。"""
