import json as js
import builtins

outputs = {}


def register_output(key, value):
    outputs[key] = value


def exit(*args):
    pass


quit = exit

# session
register_output('a', 1)
outputs['b'] = js.dumps([1])
exit()

# outputs
builtins.print('a', outputs['a'])
builtins.print('b', outputs['b'])
