import os


def addArgumentParserBaseFlags(parser, logfileName):
    '''
    Adds the flags shared by every buildhive command.

    Provides ALL flags required by the Config class.
    '''
    parser.add_argument(
        "-v",
        dest="verbose",
        help="Increase verbosity (multiple times for more verbose)",
        action="append_const",
        const=1)
    parser.add_argument(
        "-d",
        "--state-dir",
        dest='stateDir',
        metavar="DIR",
        help="Specify state directory (default='%(default)s')",
        default=os.getenv('BUILDHIVE_STATE_DIR', "~/.local/share/buildhive"))
    parser.add_argument("--rc-file", dest="rcFile",
                        help="Specify path to rc-file (default=\"%(default)s\")",
                        default="~/.config/buildhiverc")
    parser.add_argument(
        "--debug",
        action="store_true",
        help="enable debug output to <state-dir>/log/%s.log" % logfileName)
