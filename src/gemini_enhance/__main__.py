import sys

from gemini_enhance.cli import main

sys.exit(main())
