"""随包分发的默认配置（default.yaml）。"""
