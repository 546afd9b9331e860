import logging
import os
import sys


def setup(logDir, debugLogFileName, debug=False, verbose=0):
    fmt = (
        '+%(process)-6d %(levelname)-9s '
        '%(name)-20s %(filename)20s:%(lineno)-5d '
        '[%(asctime)s] %(message)s')
    if debug:
        logFileName = os.path.join(logDir, debugLogFileName + ".log")
        logging.basicConfig(
            filename=logFileName,
            level=logging.DEBUG,
            format=fmt)
    else:
        # -v shows the dispatch decisions, -vv everything
        level = {0: logging.ERROR, 1: logging.INFO}.get(verbose, logging.DEBUG)
        logging.basicConfig(stream=sys.stderr, level=level, format=fmt)
