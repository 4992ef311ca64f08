"""Allow ``python -m BlobFaultRepro``."""

from BlobFaultRepro.cli import main

if __name__ == "__main__":
    main()
