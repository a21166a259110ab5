from multipath_utils.commands import runCommand, print_banner

SERVICE_NAME = "multipath-tools"

def restart_multipath_service()->bool:
    """Restart the multipath daemon so it picks up the new configuration."""
    print_banner("Restarting multipath service")
    stdout, stderr, success = runCommand(["systemctl", "restart", SERVICE_NAME])
    if not success:
        print(f"Error restarting {SERVICE_NAME}: {stderr}")
    return success

def show_multipath_status()->str:
    print_banner("Current multipath status")
    stdout, stderr, success = runCommand(["multipath", "-ll"])
    if not success:
        print(f"Error reading multipath status: {stderr}")
        return ""
    print(stdout)
    return stdout
