import sys

from udio_prompt_crafter.cli import main

sys.exit(main())
