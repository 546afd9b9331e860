import configparser
import os

from .strategies import DEFAULT_DURATION_MS, DEFAULT_SUCCESS_RATE

RC_FILE_HELP = """\
Sample rcfile:
    [executor]
    strategy = simulated|remote|<plugin name>  # default=simulated
    duration ms = 15000  # MOCK_JOB_DURATION_MS overrides
    success rate = 0.7
    [remote]
    url template = http://{hostname}:8700/build
    timeout = 30
    [assigner]
    interval = 5
    host policy = first|random|team|<plugin name>  # default=first
    lease ttl = 60
    [reconciler]
    stuck after = 3600
    [queue]
    backend = sqlite|http  # default=sqlite
    url = https://queue.example.com/jobs
    visibility timeout = 300
    [worker]
    concurrency = 4
"""

DURATION_ENV = "MOCK_JOB_DURATION_MS"


class ConfigEnum(object):
    __slots__ = (
        'defaultName',
        '_enumVals',
    )

    def __init__(self, default, **enumVals):
        self._enumVals = enumVals
        assert default in enumVals
        self.defaultName = default
        for enumName in enumVals:
            assert enumName not in self.__slots__

    def names(self):
        return iter(self._enumVals.keys())

    def values(self):
        return iter(self._enumVals.values())

    @property
    def defaultVal(self):
        return self._enumVals[self.defaultName]

    def __getattr__(self, attr):
        assert attr != '_enumVals'
        if attr in self._enumVals:
            return self._enumVals[attr]
        else:
            return object.__getattribute__(self, attr)


QUEUE_BACKEND = ConfigEnum(
    'SQLITE',  # default
    SQLITE='sqlite',
    HTTP='http',
)


def _getConfig(cfgParser, section, option, defaultValue=None):
    if not cfgParser.has_section(section):
        return defaultValue
    if not cfgParser.has_option(section, option):
        return defaultValue
    return cfgParser.get(section, option)


def _getEnumConfig(cfgParser, section, option, enum):
    optionVal = _getConfig(
        cfgParser, section, option, enum.defaultVal)
    if optionVal not in list(enum.values()):
        raise ConfigError(
            "RC file has invalid \"{section}.{option}\" setting {optionVal}.  Valid "
            "options: {allowedVals}".format(
                section=section,
                option=option,
                optionVal=optionVal,
                allowedVals=", ".join(list(enum.values()))))

    return optionVal


def _getNumberConfig(cfgParser, section, option, default, convert=float,
                     minimum=0):
    val = _getConfig(cfgParser, section, option, None)
    if val is None:
        return default
    try:
        number = convert(val)
    except ValueError:
        number = None
    if number is None or number < minimum:
        raise ConfigError(
            "RC file has invalid \"{section}.{option}\" setting {optionVal}.  "
            "Expected a number >= {minimum}".format(
                section=section,
                option=option,
                optionVal=val,
                minimum=minimum))
    return number


class ConfigError(Exception):
    pass


class Config(object):
    # pylint: disable=too-many-instance-attributes
    validConfig = {
        'executor': {'strategy', 'duration ms', 'success rate'},
        'remote': {'url template', 'timeout'},
        'assigner': {'interval', 'host policy', 'lease ttl'},
        'reconciler': {'stuck after'},
        'queue': {'backend', 'url', 'visibility timeout'},
        'worker': {'concurrency'},
    }

    def _validateConfigParser(self, cfgParser):
        cfgSections = set(cfgParser.sections())
        unknownSections = cfgSections - set(self.validConfig.keys())
        if unknownSections:
            raise ConfigError(
                "RC file has unknown configuration sections: {}".format(
                    ", ".join(sorted(unknownSections))))
        for section in cfgSections:
            cfgValues = set(cfgParser.options(section))
            unknownOptions = cfgValues - self.validConfig[section]
            if unknownOptions:
                raise ConfigError(
                    "RC file has unknown configuration options in "
                    "section \"{}\": {}".format(
                        section, ", ".join(sorted(unknownOptions))))

    def __init__(self, options):
        stateDir = options.stateDir
        self.options = options
        self._dbDir = os.path.expanduser(stateDir) + "/db/"
        self._logDir = os.path.expanduser(stateDir) + "/log/"

        rcFile = os.path.expanduser(options.rcFile)
        cfgParser = configparser.RawConfigParser()
        cfgParser.read(rcFile)
        self._validateConfigParser(cfgParser)

        self._strategy = _getConfig(cfgParser, 'executor', 'strategy', 'simulated')
        self._durationMs = _getNumberConfig(
            cfgParser, 'executor', 'duration ms', DEFAULT_DURATION_MS, int)
        envDuration = os.getenv(DURATION_ENV)
        if envDuration:
            try:
                self._durationMs = int(envDuration)
            except ValueError:
                self._durationMs = None
            if self._durationMs is None or self._durationMs < 0:
                raise ConfigError("{}={!r} is not an integer >= 0".format(
                    DURATION_ENV, envDuration))
        self._successRate = _getNumberConfig(
            cfgParser, 'executor', 'success rate', DEFAULT_SUCCESS_RATE)
        if self._successRate > 1:
            raise ConfigError(
                "RC file has invalid \"executor.success rate\" setting {}.  "
                "Expected a number between 0 and 1".format(self._successRate))

        self._remoteUrlTemplate = _getConfig(
            cfgParser, 'remote', 'url template', 'http://{hostname}:8700/build')
        self._remoteTimeout = _getNumberConfig(
            cfgParser, 'remote', 'timeout', 30.0)

        self._assignerInterval = _getNumberConfig(
            cfgParser, 'assigner', 'interval', 5.0)
        self._hostPolicy = _getConfig(cfgParser, 'assigner', 'host policy', 'first')
        self._leaseTtl = _getNumberConfig(cfgParser, 'assigner', 'lease ttl', 60.0)

        self._stuckAfter = _getNumberConfig(
            cfgParser, 'reconciler', 'stuck after', 3600.0)

        self._queueBackend = _getEnumConfig(
            cfgParser, 'queue', 'backend', QUEUE_BACKEND)
        self._queueUrl = _getConfig(cfgParser, 'queue', 'url', None)
        if self._queueBackend == QUEUE_BACKEND.HTTP and not self._queueUrl:
            raise ConfigError(
                "RC file sets \"queue.backend\" to http without \"queue.url\"")
        self._visibilityTimeout = _getNumberConfig(
            cfgParser, 'queue', 'visibility timeout', 300.0)

        self._workerConcurrency = _getNumberConfig(
            cfgParser, 'worker', 'concurrency', 4, int, minimum=1)

    @property
    def verbose(self):
        return getattr(self.options, 'verbose', None)

    @staticmethod
    def checkDir(dirName):
        if not os.access(dirName, os.W_OK | os.X_OK | os.R_OK):
            os.makedirs(dirName)
        return dirName

    @property
    def dbDir(self):
        return self.checkDir(self._dbDir)

    @property
    def logDir(self):
        return self.checkDir(self._logDir)

    @property
    def dbFile(self):
        return os.path.join(self.dbDir, "buildhive.sqlite")

    @property
    def strategy(self):
        return self._strategy

    @property
    def durationMs(self):
        return self._durationMs

    @property
    def successRate(self):
        return self._successRate

    @property
    def remoteUrlTemplate(self):
        return self._remoteUrlTemplate

    @property
    def remoteTimeout(self):
        return self._remoteTimeout

    @property
    def assignerInterval(self):
        return self._assignerInterval

    @property
    def hostPolicy(self):
        return self._hostPolicy

    @property
    def leaseTtl(self):
        return self._leaseTtl

    @property
    def stuckAfter(self):
        return self._stuckAfter

    @property
    def queueBackend(self):
        return self._queueBackend

    @property
    def queueUrl(self):
        return self._queueUrl

    @property
    def visibilityTimeout(self):
        return self._visibilityTimeout

    @property
    def workerConcurrency(self):
        return self._workerConcurrency
