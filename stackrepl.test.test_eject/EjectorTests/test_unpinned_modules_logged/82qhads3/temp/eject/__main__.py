import json as js
from stackrepl.test.test_eject import a
import pulumi

outputs = {}


def register_output(key, value):
    outputs[key] = value


def exit(*args):
    pass


quit = exit

# session

# outputs
