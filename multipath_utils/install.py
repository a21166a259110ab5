import sys, os, json, argparse

from multipath_utils.commands import error_exit, print_banner
from multipath_utils.multipathConfig import (
    MULTIPATH_CONF, generate_multipath_config, add_multipath_entries,
    remove_multipath_entry, list_multipath_entries, readMultipathConfigFile,
    writeMultipathConfigFile, backup_multipath_config
)
from multipath_utils.packages import ensure_iscsi_tools, ensure_multipath_tools
from multipath_utils.storageBinding import bind_iscsi_luns
from multipath_utils.multipathService import restart_multipath_service, show_multipath_status
from multipath_utils.prompts import (
    main_menu, collect_inputs, ask_wwid_to_remove, ask_yes_no,
    validate_entry, validate_config_value, validate_device_value
)

ACTIONS = ['install', 'add', 'remove']

def main(action:str=None, config:dict=None, multipathConf:str=None, wwid:str=None, restart:bool=None)->int:
    """
    Runs one of the install, add or remove flows

    Args:
        action: (str) 'install', 'add' or 'remove'. The main menu is shown when not given
        config: (dict) Loaded JSON configuration. Values are prompted for when not given
        multipathConf: (str) Path to the multipath configuration file
        wwid: (str) WWID to remove, prompted for when not given
        restart: (bool) Restart the multipath service after add/remove. Asked when None

    Returns:
        int: Exit code
    """
    config = config or {}
    multipathConf = multipathConf or config.get('multipathConf', MULTIPATH_CONF)

    if action is None:
        action = main_menu()

    if action == 'install':
        portal, entries = get_portal_and_entries(config)
        device = config.get('device', {})
        install_flow(portal, entries, multipathConf,
                     vendor=device.get('vendor', 'Nimble'), product=device.get('product', 'Server'))
    elif action == 'add':
        add_flow(config, multipathConf, restart)
    elif action == 'remove':
        remove_flow(wwid, multipathConf, restart)
    else:
        print("Nothing to do. Exiting...")

    return 0

def load_config(config_path: str) -> dict:
    """
    Loads and validates a JSON configuration file

    Args:
        config_path: (str) Path to the JSON configuration file

    Returns:
        dict: The configuration data

    Raises:
        ValueError: If the file content is not a valid configuration
    """
    with open(config_path, 'r') as f:
        config = json.load(f)

    if not isinstance(config, dict):
        raise ValueError("Configuration must be a JSON object")

    errors = []
    # Portal and entries are only useful together
    if ('portal' in config) != ('entries' in config):
        missing = 'entries' if 'portal' in config else 'portal'
        errors.append(f"Missing '{missing}': 'portal' and 'entries' must be given together")
    if 'portal' in config and not validate_config_value(str(config['portal'])):
        errors.append(f"Invalid portal: '{config['portal']}'")

    entries = config.get('entries', [])
    if not isinstance(entries, list):
        errors.append("'entries' must be a list of objects")
    elif 'entries' in config and not entries:
        errors.append("'entries' must not be empty")
    else:
        for idx, entry in enumerate(entries):
            if not isinstance(entry, dict):
                errors.append(f"Entry {idx+1}: must be an object")
            else:
                errors.extend(f"Entry {idx+1}: {error}" for error in validate_entry(entry))

    device = config.get('device', {})
    if not isinstance(device, dict):
        errors.append("'device' must be an object with 'vendor' and 'product' keys")
    else:
        for key in ('vendor', 'product'):
            if key in device and not validate_device_value(str(device[key])):
                errors.append(f"Invalid device {key}: '{device[key]}'")

    if 'multipathConf' in config and not isinstance(config['multipathConf'], str):
        errors.append("'multipathConf' must be a path string")
    if errors:
        raise ValueError("\n".join(errors))

    return config

def get_portal_and_entries(config:dict)->tuple:
    """Use the entries from the configuration file, or ask for them."""
    if config.get('portal') and config.get('entries'):
        entries = [dict(entry, lun=int(entry['lun'])) for entry in config['entries']]
        return config['portal'], entries
    return collect_inputs()

def install_flow(portal:str, entries:list, multipathConf:str, vendor:str="Nimble", product:str="Server")->None:
    """
    Installs the prerequisites, binds the LUNs and writes a new multipath.conf

    Args:
        portal: (str) iSCSI portal
        entries: (list) List of entry dictionaries
        multipathConf: (str) Path to the multipath configuration file
        vendor: (str) Storage array vendor for the devices section
        product: (str) Storage array product for the devices section
    """
    if not ensure_iscsi_tools():
        error_exit("ERROR: Installation of open-iscsi failed.")
    if not bind_iscsi_luns(entries, portal):
        error_exit("ERROR: Binding iSCSI LUNs failed.")
    if not ensure_multipath_tools():
        error_exit("ERROR: Installation of multipath-tools failed.")

    print_banner("Writing multipath configuration")
    backup_multipath_config(multipathConf)
    content = generate_multipath_config(entries, vendor=vendor, product=product)
    writeMultipathConfigFile(multipathConf, [content])
    print(f"New configuration written to {multipathConf}")

    if not restart_multipath_service():
        error_exit("ERROR: Restarting multipath-tools failed.")
    show_multipath_status()
    print("Multipath configuration completed")

def add_flow(config:dict, multipathConf:str, restart:bool=None)->None:
    lines = readMultipathConfigFile(multipathConf)
    if lines is None:
        error_exit(f"ERROR: {multipathConf} not found. Run the install first.")

    portal, entries = get_portal_and_entries(config)
    if not bind_iscsi_luns(entries, portal):
        error_exit("ERROR: Binding iSCSI LUNs failed.")

    print_banner("Adding multipath entries")
    backup_multipath_config(multipathConf)
    try:
        lines = add_multipath_entries(lines, entries)
    except ValueError as e:
        error_exit(f"ERROR: Cannot add entries to {multipathConf}: {e}")
    writeMultipathConfigFile(multipathConf, lines)
    for entry in entries:
        print(f"Added multipath entry (WWID: {entry['wwid']}, Alias: {entry['alias']})")

    _maybe_restart(restart)

def remove_flow(wwid:str, multipathConf:str, restart:bool=None)->None:
    # Removal matches substrings, so blanks or braces would match every block
    if wwid is not None:
        wwid = wwid.strip()
        if not validate_config_value(wwid):
            error_exit(f"ERROR: Invalid WWID '{wwid}'. Empty values, spaces, quotes, braces and '#' are not allowed.")

    lines = readMultipathConfigFile(multipathConf)
    if lines is None:
        error_exit(f"ERROR: {multipathConf} not found. Nothing to remove.")

    backup_multipath_config(multipathConf)
    if wwid is None:
        wwid = ask_wwid_to_remove(list_multipath_entries("".join(lines)))

    try:
        newLines = remove_multipath_entry(lines, wwid)
    except ValueError as e:
        error_exit(f"ERROR: {e}")

    if newLines == lines:
        print(f"No multipath entry with WWID '{wwid}' found. Nothing changed.")
        return

    writeMultipathConfigFile(multipathConf, newLines)
    print(f"Multipath entry with WWID '{wwid}' was removed.")
    _maybe_restart(restart)

def _maybe_restart(restart:bool)->None:
    if restart is None:
        restart = ask_yes_no("Restart the multipath service now to apply the change?")
    if restart:
        if not restart_multipath_service():
            error_exit("ERROR: Restarting multipath-tools failed.")
        show_multipath_status()

def cli(argv:list=None)->int:
    parser = argparse.ArgumentParser(description="Registers iSCSI LUNs with Proxmox and manages multipath aliases in multipath.conf.")
    parser.add_argument('--action', choices=ACTIONS, help='Flow to run. Shows the main menu when omitted', required=False)
    parser.add_argument('--config', type=str, help='Path to JSON configuration file with portal and entries', required=False)
    parser.add_argument('--wwid', type=str, help='WWID of the multipath entry to remove', required=False)
    parser.add_argument('--multipath-conf', dest='multipathConf', type=str, help=f'Path to multipath configuration file (Default: {MULTIPATH_CONF})', required=False)
    parser.add_argument('--no-restart', dest='noRestart', action='store_true', help='Do not restart the multipath service after add/remove')
    args = parser.parse_args(argv)

    if os.geteuid() != 0:
        print("Error: This tool requires root privileges. Run with sudo.", file=sys.stderr)
        return 1

    config = None
    if args.config:
        try:
            config = load_config(args.config)
        except (OSError, ValueError) as e:
            print(f"Error reading config file: {e}", file=sys.stderr)
            return 1

    # Interactive runs are asked before restarting
    restart = None
    if args.noRestart:
        restart = False
    elif config is not None or args.wwid:
        restart = True

    return main(args.action, config, args.multipathConf, args.wwid, restart)

if __name__ == "__main__":
    sys.exit(cli())
