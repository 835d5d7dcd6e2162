"""Declaration file format for iamrecon.

This package provides the two validation gates a declaration file must
pass before it is turned into a resource graph:
1. Schema — JSON Schema for structural validation
2. Semantic validator — reference, ARN, principal and least-privilege checks

Variable interpolation (``${var.NAME}``) runs between the two gates.
"""

FORMAT_VERSION = "1.0"
