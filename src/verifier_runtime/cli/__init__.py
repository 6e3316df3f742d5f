"""
verifier-runtime CLI。

入口：
- `verifier-runtime`（`verifier_runtime.cli.main:main`）
- `test-registrar` / `test-verifier`
"""
