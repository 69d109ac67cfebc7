"""
ms2uvfits module entry point.

Allows running as: python -m ms2uvfits convert mydata.ms -o out/obs
"""

from .cli import main

if __name__ == "__main__":
    main()
