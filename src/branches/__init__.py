"""Interactive git branch browser.

Features:
- List local branches with their last commit
- Checkout, create, delete and rename branches
- Interactive mode driven by a sequential command queue
- Duplicate refresh requests collapsed by identifier
"""

__version__ = "0.3.0"
