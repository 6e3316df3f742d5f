"""
配置层。

- `paths`：共享配置文件路径解析
- `run_spec`：`TestRunSpec` 模型、校验与读写
- `loader`/`defaults`：运行时设置（YAML overlays）
"""
