import pulumi

outputs = {}


def register_output(key, value):
    outputs[key] = value


def exit(*args):
    pass


quit = exit

# session
x = 1
y = x + 1
register_output('y', y)

# outputs
pulumi.export('y', outputs['y'])
