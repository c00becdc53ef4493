# This file is part of lunmount. See LICENSE file for copyright and license info.

# Operator interaction.  The storage state machine only ever sees a
# Confirmer, so it runs the same way interactively, with --yes/--no, or in
# tests with scripted answers.

import getpass
import re
import sys

from lunmount import util
from lunmount.log import LOG

YES_RE = re.compile(r'^[Yy]$')


class Confirmer(object):
    """confirm(question) -> bool.  Declining is always the safe answer."""

    def confirm(self, question):
        raise NotImplementedError()

    def show(self, text):
        """present supporting information to the operator"""
        LOG.info(text)


class InteractiveConfirmer(Confirmer):

    def __init__(self, input_func=input, out=None):
        self.input_func = input_func
        self.out = out if out is not None else sys.stdout

    def confirm(self, question):
        try:
            answer = self.input_func("%s (y/N): " % question)
        except EOFError:
            answer = ''
        return YES_RE.match(answer.strip()) is not None

    def show(self, text):
        self.out.write(text if text.endswith('\n') else text + '\n')
        self.out.flush()


class FixedConfirmer(Confirmer):
    """Answer every question the same way, for --yes and --no."""

    def __init__(self, answer):
        self.answer = bool(answer)

    def confirm(self, question):
        LOG.info("%s -> %s (non-interactive)", question,
                 'yes' if self.answer else 'no')
        return self.answer


class ScriptedConfirmer(Confirmer):
    """Replay a list of answers in order, recording every question asked.

    Running out of answers means an unexpected question was asked, which
    raises rather than guessing.
    """

    def __init__(self, answers=None):
        self.answers = list(answers or [])
        self.asked = []
        self.shown = []

    def confirm(self, question):
        self.asked.append(question)
        if not self.answers:
            raise AssertionError("unexpected question: %s" % question)
        return bool(self.answers.pop(0))

    def show(self, text):
        self.shown.append(text)


def ask(prompt, secret=False, input_func=input, getpass_func=getpass.getpass):
    """read one required value; secret values are not echoed"""
    try:
        if secret:
            value = getpass_func("%s (not displayed): " % prompt)
        else:
            value = input_func("%s: " % prompt)
    except EOFError:
        value = ''
    value = value.strip()
    if not value:
        raise util.InputValidationError("%s is required." % prompt)
    return value


PROMPTS = (
    ('name', 'Enter target IQN (e.g., iqn.2000-01.com.example:storage.lun1)',
     False),
    ('user', 'Enter CHAP username', False),
    ('password', 'Enter CHAP password', True),
    ('portal', 'Enter portal IP address (e.g., 192.168.2.100)', False),
    ('mount_path', 'Enter mount path (e.g., /mnt/storage)', False),
)


def gather(values, **kwargs):
    """Fill in every field of values that is still empty by asking for it.

    All questions are asked up front, before anything is changed.
    """
    values = dict(values)
    for key, prompt, secret in PROMPTS:
        if not values.get(key):
            values[key] = ask(prompt, secret=secret, **kwargs)
    return values

# vi: ts=4 expandtab syntax=python
