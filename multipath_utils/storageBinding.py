from multipath_utils.commands import runCommand, print_banner

def build_pvesm_command(entry:dict, portal:str)->list:
    return [
        "pvesm", "add", "iscsi", entry['storageId'],
        "--portal", portal,
        "--target", entry['target'],
        "--lun", str(entry['lun'])
    ]

def bind_iscsi_luns(entries:list, portal:str)->bool:
    """
    Registers each iSCSI LUN with the Proxmox storage manager

    Args:
        entries: (list) List of dictionaries with 'storageId', 'target' and 'lun' keys
        portal: (str) iSCSI portal shared by all entries

    Returns:
        bool: True if every LUN was bound, False on the first failure
    """
    print_banner("Binding iSCSI LUNs")
    for entry in entries:
        print(f"Binding iSCSI target '{entry['target']}' with LUN '{entry['lun']}' (Storage ID: {entry['storageId']})...")
        stdout, stderr, success = runCommand(build_pvesm_command(entry, portal))
        if not success:
            print(f"ERROR: Failed to add storage {entry['storageId']}")
            print(f"STDERR: {stderr}")
            return False
    return True
