from stackrepl.test.test_orchestrator import a
from stackrepl.test.test_orchestrator import b
import pulumi

outputs = {}


def register_output(key, value):
    outputs[key] = value


def exit(*args):
    pass


quit = exit

# session
register_output('url', 'https://x')
exit()

# outputs
pulumi.export('url', outputs['url'])
