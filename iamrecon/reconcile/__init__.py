"""Reconciliation — diff, plan, apply and drift detection.

This package provides the primitives for:
- Diff: desired attributes vs observed remote attributes, per address
- State: which resources iamrecon manages, plus an operation journal
- Planning: ordered create/update/replace/delete steps
- Execution: applying a plan, stopping at the first failure
- Drift detection: remote changes made outside iamrecon
"""
