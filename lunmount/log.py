# This file is part of lunmount. See LICENSE file for copyright and license info.

import logging
import os
import time

from functools import wraps

# Logging items for easy access
getLogger = logging.getLogger

CRITICAL = logging.CRITICAL
FATAL = logging.FATAL
ERROR = logging.ERROR
WARNING = logging.WARNING
WARN = logging.WARN
INFO = logging.INFO
DEBUG = logging.DEBUG
NOTSET = logging.NOTSET

EVENT_FORMAT = '%(asctime)s: %(message)s'
EVENT_DATEFMT = '%Y-%m-%d %H:%M:%S'


class NullHandler(logging.Handler):
    def emit(self, record):
        pass


def basicConfig(**kwargs):
    # basically like logging.basicConfig but only output for our logger
    if kwargs.get('filename'):
        handler = logging.FileHandler(filename=kwargs['filename'],
                                      mode=kwargs.get('filemode', 'a'))
    elif kwargs.get('stream'):
        handler = logging.StreamHandler(stream=kwargs['stream'])
    else:
        handler = NullHandler()

    if 'verbosity' in kwargs:
        level = ((logging.WARNING, logging.INFO, logging.DEBUG)
                 [min(kwargs['verbosity'], 2)])
    else:
        level = kwargs.get('level', logging.NOTSET)

    handler.setFormatter(logging.Formatter(fmt=kwargs.get('format'),
                                           datefmt=kwargs.get('datefmt')))
    handler.setLevel(level)

    logging.getLogger().setLevel(level)

    logger = _getLogger()
    for h in list(logger.handlers):
        logger.removeHandler(h)
    logger.setLevel(level)
    logger.addHandler(handler)


def _getLogger(name='lunmount'):
    return logging.getLogger(name)


def event_log(filename):
    """Return the logger for the shared, append-only event log.

    Every entry point (attach, detach and the health monitor) records its
    outcomes here as one timestamped line per event.  Calling this again
    with the same filename does not add a second handler.
    """
    logger = _getLogger('lunmount.events')
    logger.setLevel(logging.INFO)
    for h in logger.handlers:
        if getattr(h, 'baseFilename', None) == os.path.abspath(filename):
            return logger
    handler = logging.FileHandler(filename=filename, mode='a')
    handler.setFormatter(logging.Formatter(fmt=EVENT_FORMAT,
                                           datefmt=EVENT_DATEFMT))
    handler.setLevel(logging.INFO)
    logger.addHandler(handler)
    return logger


def close_event_log():
    logger = _getLogger('lunmount.events')
    for h in list(logger.handlers):
        logger.removeHandler(h)
        h.close()


if not logging.getLogger().handlers:
    logging.getLogger().addHandler(NullHandler())


def _repr_call(name, *args, **kwargs):
    return "%s(%s)" % (
        name,
        ', '.join([str(repr(a)) for a in args] +
                  ["%s=%s" % (k, repr(v)) for k, v in kwargs.items()]))


def log_call(func, *args, **kwargs):
    return log_time(
        "TIMED %s: " % _repr_call(func.__name__, *args, **kwargs),
        func, *args, **kwargs)


def log_time(msg, func, *args, **kwargs):
    start = time.time()
    try:
        return func(*args, **kwargs)
    finally:
        LOG.debug(msg + "%.3f", (time.time() - start))


def logged_call():
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            return log_call(func, *args, **kwargs)
        return wrapper
    return decorator


def logged_time(msg):
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            return log_time("TIMED %s: " % msg, func, *args, **kwargs)
        return wrapper
    return decorator


LOG = _getLogger()

# vi: ts=4 expandtab syntax=python
