from pedalmon.main import run

run()
