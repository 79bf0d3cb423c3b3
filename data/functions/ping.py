def run(ctx):
    return "pong"
