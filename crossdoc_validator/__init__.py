"""
Cross-Document Validator — field extraction and cross-validation for
identity and registration documents submitted together in one case.

Architecture: Extract → Normalize → Cross-validate against siblings → Fraud checks → Verdict
Philosophy:  Every verdict is a deterministic, explainable recommendation for a human reviewer.
"""

__version__ = "1.0.0"
