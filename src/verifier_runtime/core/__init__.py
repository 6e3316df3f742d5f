"""核心执行层：错误分类、Executor、Registrar、Verifier。"""
