import os.path as op
import re
import time
from collections import deque


def check_file(path):
    """Ensure the provided path points to an existing file."""
    path = op.expandvars(op.expanduser(path))
    if not op.isfile(path):
        raise FileNotFoundError(f'file not found: {path}')
    return path


def flag(s):
    """Turn 'flag_name' into `--flag-name`."""
    return '--' + str(s).replace('_', '-')


def flags_from_dict(d):
    """Turn a dictionary of flags into a list of strings required by subprocess methods.
    `True` values become bare switches, `False` and `None` values are skipped."""
    res = []
    for k, v in d.items():
        if v is None or v is False:
            continue
        res.append(flag(k))
        if v is not True:
            val = str(v)
            if ' ' in val:
                res += val.split(' ')
            else:
                res.append(val)
    return res


def tail(path, lines=20):
    """Return the last `lines` lines of a text file as a list of strings.
    Returns an empty list if the file does not exist."""
    if not path or not op.isfile(path):
        return []
    with open(path, encoding='utf-8', errors='replace') as f:
        return [line.rstrip('\n') for line in deque(f, maxlen=lines)]


def follow(path, lines=20, interval=0.5):
    """Like `tail -f`: yield the last `lines` lines of a text file, then each line
    appended to it afterwards. Never returns, stop iterating to quit."""
    with open(path, encoding='utf-8', errors='replace') as f:
        for line in deque(f, maxlen=lines):
            yield line.rstrip('\n')
        partial = ''
        while True:
            chunk = f.readline()
            if not chunk:
                time.sleep(interval)
                continue
            partial += chunk
            if partial.endswith('\n'):
                yield partial.rstrip('\n')
                partial = ''


def greplog(path, regexp):
    """Find in the file all occurrences of the given regexp. Returns a list of matches."""
    if not path or not op.isfile(path):
        return []
    with open(path, encoding='utf-8', errors='replace') as f:
        log = f.read()
    return re.findall(regexp, log)


def as_bool(value):
    """Interpret strings like 'true', '1', 'yes' as booleans."""
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ('1', 'true', 'yes', 'on')
