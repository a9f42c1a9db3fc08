import json as js
import pulumi

outputs = {}


def register_output(key, value):
    outputs[key] = value


def exit(*args):
    pass


quit = exit

# session

# outputs
