import sys

from ort_artifact.build.cli import main

sys.exit(main())
