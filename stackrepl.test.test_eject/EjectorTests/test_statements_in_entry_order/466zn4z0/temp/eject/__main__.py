from stackrepl.test.test_eject import a
from stackrepl.test.test_eject import b
import pulumi

outputs = {}


def register_output(key, value):
    outputs[key] = value


def exit(*args):
    pass


quit = exit

# session
a()
b()

# outputs
pulumi.export('url', outputs['url'])
