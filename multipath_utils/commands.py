import sys, shlex, shutil, subprocess

def runCommand(command)->tuple:
    """
    Runs a shell command

    Args:
        command: (str|list) Command to run, either as a string or an argument list

    Returns:
        tuple:
            str:stdout
            str:stderr
            bool: True if command ran successfully, false otherwise
    """
    if isinstance(command, str):
        args = shlex.split(command)
    else:
        args = [str(arg) for arg in command]
    commandString = shlex.join(args)

    print(f"RUNNING: {commandString}")
    try:
        result = subprocess.run(args, capture_output=True, text=True, check=True)
        return result.stdout.strip(), result.stderr.strip(), result.returncode == 0
    except subprocess.CalledProcessError as e:
        print(f"Error running command '{commandString}': exit code {e.returncode}")
        stderr = e.stderr.strip() if e.stderr else ""
        stdout = e.stdout.strip() if e.stdout else ""
        return stdout, stderr, False
    except FileNotFoundError as e:
        print(f"ERROR: {args[0]} command not found.")
        return "", str(e), False
    except OSError as e:
        print(f"ERROR: '{commandString}' threw an error!\n{e}")
        return "", str(e), False

def command_exists(name:str)->bool:
    """Check whether an executable is available on PATH."""
    return shutil.which(name) is not None

def error_exit(message:str, code:int=1):
    """Print an error message to stderr and terminate."""
    print(message, file=sys.stderr)
    sys.exit(code)

def print_banner(title:str)->None:
    border = "#" * (len(title) + 4)
    print()
    print(border)
    print(f"# {title} #")
    print(border)
