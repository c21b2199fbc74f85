#!/usr/bin/env python3
import sys

from converter import main


if __name__ == "__main__":
    sys.exit(main())
