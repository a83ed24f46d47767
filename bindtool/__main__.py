"""python -m bindtool"""

from bindtool.cli import bindtool_main

if __name__ == "__main__":
    bindtool_main()
