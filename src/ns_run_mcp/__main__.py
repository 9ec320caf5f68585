"""ns-run-mcp 入口点。

支持: python -m ns_run_mcp
"""

from .app import main

if __name__ == "__main__":
    main()
