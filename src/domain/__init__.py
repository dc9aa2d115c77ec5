"""Domain layer package.

This package contains the pure generation and reconciliation logic:
- stages: Per-stage output types, validators, insights and analysis
- assembly: Stage outputs -> incoming specification
- merge, deletion, normalize: Merge engine
- quality: Quality scorer
- prompts: Prompt loading utilities
"""
