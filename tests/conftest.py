import os
import tempfile

# Keep log files and default data paths out of the real home directory while testing. Has to happen
# before anything imports timeflow.common.setup.
os.environ.setdefault("TIMEFLOW_HOME", tempfile.mkdtemp(prefix="timeflow-tests-"))
