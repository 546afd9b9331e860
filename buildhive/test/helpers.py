from contextlib import contextmanager
from io import StringIO
import os
import shutil
import sys
import tempfile

from buildhive.repository import SqliteBuildStore
from buildhive.strategies import ExecutionStrategy, Outcome

HOSTNAME = 'host.example.com'
HOME = '/home/me'
USER = 'me'


def resetEnv():
    os.environ['HOME'] = HOME
    os.environ['HOSTNAME'] = HOSTNAME
    os.environ['BUILDHIVE_STATE_DIR'] = '/tmp/BADDIR'
    os.environ['USER'] = USER
    if 'MOCK_JOB_DURATION_MS' in os.environ:
        del os.environ['MOCK_JOB_DURATION_MS']


@contextmanager
def capturedOutput():
    ''' Used to capture stdout or stderr.
    eg.
    with capturedOutput() as (out, err):
        print("foo")

    self.assertEqual(out.getvalue(), "foo")
    '''
    newOut, newErr = StringIO(), StringIO()
    oldOut, oldErr = sys.stdout, sys.stderr
    try:
        sys.stdout, sys.stderr = newOut, newErr
        yield sys.stdout, sys.stderr
    finally:
        sys.stdout, sys.stderr = oldOut, oldErr


class StoreTestMixin(object):
    """Gives each test a fresh SQLite store in a temporary directory."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.temp_dir, "test.db")
        self.store = SqliteBuildStore(self.db_path)

    def tearDown(self):
        self.store.close()
        shutil.rmtree(self.temp_dir)


class FixedStrategy(ExecutionStrategy):
    """Records calls and returns a preset outcome."""

    name = "fixed"

    def __init__(self, succeeded=True, error=None, hook=None):
        self.succeeded = succeeded
        self.error = error
        self.hook = hook
        self.calls = []

    def execute(self, job, host):
        self.calls.append((job, host))
        if self.hook is not None:
            self.hook(job, host)
        if self.error is not None:
            raise self.error
        return Outcome(self.succeeded, "fixed")
