import base64, json, re
import pytest
import pandas as dp

from Utils.SCCM import SCCMUtil, CMService
from Utils.OUTPUT import OutputUtil

def site(fake):
	fake.respond('DB_NAME', rows = [{'': 'CM_PS1'}])

def sites(fake):
	fake.respond('DB_NAME', rows = [{'': 'master'}])
	fake.respond('sys.databases', rows = [{'name': 'CM_PS1'}, {'name': 'CM_PS2'}])

@pytest.fixture
def tables(monkeypatch):
	printed = []
	monkeypatch.setattr(OutputUtil, 'print_table', printed.append)
	return printed

##################################################
#                     RBAC                       #
##################################################

def admin(name, created):
	return {'AdminID': 16777217, 'AdminSID': b'\x01', 'LogonName': name, 'IsGroup': 0, 'IsDeleted': 0,
			'CreatedBy': 'CORP\\cmadmin', 'CreatedDate': created, 'ModifiedBy': 'CORP\\cmadmin',
			'ModifiedDate': created, 'SourceSite': 'PS1'}

def test_pick_template():
	assert SCCMUtil.pickTemplate([{}] * 10) == 2
	assert SCCMUtil.pickTemplate([{}] * 5) == 2
	assert SCCMUtil.pickTemplate([{}] * 4) == 2
	assert SCCMUtil.pickTemplate([{}] * 3) == 1
	assert SCCMUtil.pickTemplate([{}]) == 0

def test_add_rbac_admin(fake, ctx):
	site(fake)
	fake.respond('TOP 10 AdminID', rows = [
		admin('CORP\\newest', '2024-05-01 09:00:00.000'),
		admin('CORP\\second', '2024-02-01 09:00:00.000'),
		admin('CORP\\third', '2023-01-03 10:00:00.000'),
		admin('CORP\\fourth', '2022-01-01 10:00:00.000'),
		admin('CORP\\fifth', '2021-01-01 10:00:00.000'),
	])
	fake.respond('RowsAffected', rows = [{'RowsAffected': 1}])

	template = SCCMUtil.addRbacAdmin(ctx, "CORP\\attacker")

	assert template['LogonName'] == 'CORP\\third'
	insert = [q for q in fake.queries if 'INSERT INTO [CM_PS1].dbo.RBAC_Admins' in q]
	assert len(insert) == 1
	assert "SUSER_SID('CORP\\attacker')" in insert[0]
	assert "'2023-01-03T10:00:00'" in insert[0]
	assert not any('RBAC_ExtendedPermissions' in q for q in fake.queries)

def test_add_rbac_full_admin(fake, ctx):
	site(fake)
	fake.respond('TOP 10 AdminID', rows = [admin('CORP\\only', '2023-01-03 10:00:00.000')])
	fake.respond('RowsAffected', rows = [{'RowsAffected': 3}])

	SCCMUtil.addRbacAdmin(ctx, "CORP\\attacker", True)

	grant = [q for q in fake.queries if 'RBAC_ExtendedPermissions' in q]
	assert len(grant) == 1
	for scope, scopeType in SCCMUtil.FULL_ADMIN_SCOPES:
		assert f"(@AdminID, 'SMS0001R', '{scope}', {scopeType})" in grant[0]

def test_add_rbac_admin_without_template(fake, ctx, capsys):
	site(fake)
	assert SCCMUtil.addRbacAdmin(ctx, "CORP\\attacker") is None
	assert "No existing RBAC user admins" in capsys.readouterr().err
	assert not any('INSERT' in q for q in fake.queries)

#####################################################
#                     Scripts                       #
#####################################################

def test_delete_cmpivot_refused(fake, ctx, capsys):
	assert SCCMUtil.deleteScript(ctx, CMService.CMPIVOT_GUID.lower()) is None
	assert fake.queries == []
	assert "CMPivot" in capsys.readouterr().err

def test_delete_script(fake, ctx, capsys):
	site(fake)
	fake.respond('RowsAffected', rows = [{'RowsAffected': 0}])
	SCCMUtil.deleteScript(ctx, 'ABC')
	assert "No script found with GUID: ABC" in capsys.readouterr().err

def test_add_script(fake, ctx, tmp_path):
	site(fake)
	fake.respond('RowsAffected', rows = [{'RowsAffected': 1}])
	script = tmp_path / "payload.ps1"
	script.write_text("whoami")

	guid = SCCMUtil.addScript(ctx, str(script), "Updater", "abc-def")

	assert guid == "ABC-DEF"
	insert = fake.queries[-1]
	assert "'ABC-DEF', 1, 'Updater', 0x" + "whoami".encode('utf-16-le').hex().upper() in insert
	assert f"'{CMService.hash_script('whoami')}'" in insert

def test_run_script(fake, ctx, capsys):
	site(fake)
	fake.respond('ScriptHash, ScriptVersion', rows = [{'ScriptHash': 'ABCD', 'ScriptVersion': 1, 'ScriptName': 'CMDeploy01'}])
	fake.respond('v_R_System sys', rows = [{'Name0': 'WS01', 'OnlineStatus': 1, 'LastOnlineTime': None}])
	fake.respond('RowsAffected', rows = [{'RowsAffected': 1}])
	fake.respond('SELECT TaskID', rows = [{'TaskID': 42}])
	fake.respond('ScriptsExecutionStatus', rows = [{'ScriptExecutionState': 0, 'ScriptExitCode': 0, 'ScriptOutput': json.dumps(['corp\\ws01$', 'done'])}])

	taskId = SCCMUtil.runScript(ctx, 'GUID-1', 16777220, 0)

	assert taskId == 42
	task = [q for q in fake.queries if 'INSERT INTO [CM_PS1].dbo.BGB_Task ' in q][0]
	param = re.search(r"'([A-Za-z0-9+/=]{40,})'\)", task).group(1)
	assert param == CMService.build_script_task_param('GUID-1', 1, 'ABCD')
	assert any("VALUES (16777220, 15, 42, N'')" in q for q in fake.queries)
	out = capsys.readouterr().out
	assert "corp\\ws01$\ndone\n" in out

def test_run_script_unknown_device(fake, ctx, capsys):
	site(fake)
	fake.respond('ScriptHash, ScriptVersion', rows = [{'ScriptHash': 'ABCD', 'ScriptVersion': 1, 'ScriptName': 'CMDeploy01'}])
	assert SCCMUtil.runScript(ctx, 'GUID-1', 1, 0) is None
	assert "Device not found: ResourceID 1" in capsys.readouterr().err
	assert not any('BGB_Task' in q for q in fake.queries)

def test_print_script_output(capsys):
	SCCMUtil.printScriptOutput('["a", "b"]')
	SCCMUtil.printScriptOutput('[not json]')
	assert capsys.readouterr().out == "a\nb\n[not json]\n"

def test_get_scripts(fake, ctx):
	site(fake)
	fake.respond('dbo.Scripts', rows = [{'ScriptGuid': 'G', 'ScriptName': 'n', 'ApprovalState': 3, 'ParamsDefinition': None}])
	SCCMUtil.getScripts(ctx, 'n')
	assert f"ScriptGuid <> '{CMService.CMPIVOT_GUID}' AND ScriptName LIKE '%n%'" in fake.queries[-1]

SCRIPT = {'ScriptGuid': 'GUID-1', 'ScriptName': 'CMDeploy01', 'ScriptVersion': 1, 'Author': 'CORP\\cmadmin', 'Approver': None,
			'ScriptDescription': None, 'ApprovalState': 3, 'LastUpdateTime': '2024-05-01 09:00:00.000',
			'ParamsDefinition': base64.b64encode(b'<ScriptParameters/>').decode(),
			'Script': (b'\xff\xfe' + 'whoami /all'.encode('utf-16-le')).hex().encode()}

def test_get_script(fake, ctx, capsys):
	site(fake)
	fake.respond('dbo.Scripts', rows = [SCRIPT])

	row = SCCMUtil.getScript(ctx, 'GUID-1')

	assert row['ScriptName'] == 'CMDeploy01'
	assert "WHERE ScriptGuid = 'GUID-1'" in fake.queries[-1]
	out = capsys.readouterr().out
	assert "Approved" in out
	assert "2024-05-01 09:00:00" in out
	assert "[+] Script Parameters:\n<ScriptParameters/>\n" in out
	assert "[+] Script Content:\n\nwhoami /all\n" in out

def test_get_script_in_second_site(fake, ctx, capsys):
	sites(fake)
	fake.respond('[CM_PS1].dbo.Scripts', errors = ["Invalid object name 'CM_PS1.dbo.Scripts'."])
	fake.respond('[CM_PS2].dbo.Scripts', rows = [SCRIPT])

	assert SCCMUtil.getScript(ctx, 'GUID-1')['ScriptGuid'] == 'GUID-1'
	out, err = capsys.readouterr()
	assert "Failed to query CM_PS1" in err
	assert "not found in any ConfigMgr database" not in err
	assert "whoami /all" in out

def test_get_script_not_found(fake, ctx, capsys):
	site(fake)
	assert SCCMUtil.getScript(ctx, 'GUID-9') is None
	assert "Script with GUID 'GUID-9' not found in any ConfigMgr database" in capsys.readouterr().err

def test_get_script_status(fake, ctx, capsys):
	site(fake)
	fake.respond('ScriptsExecutionStatus ses', rows = [{'TaskID': 42, 'ScriptExecutionState': 0, 'ScriptExitCode': 0,
														'ScriptOutput': json.dumps(['CORP\\ws01$', 'Done']), 'DeviceName': 'WS01'}])

	row = SCCMUtil.getScriptStatus(ctx, 42)

	assert row['TaskID'] == 42
	assert "WHERE ses.TaskID = 42;" in fake.queries[-1]
	out = capsys.readouterr().out
	assert "[+] Script Output:\n\nCORP\\ws01$\nDone\n" in out
	assert '["' not in out

def test_get_script_status_unknown_task(fake, ctx, capsys):
	site(fake)
	assert SCCMUtil.getScriptStatus(ctx, 7) is None
	assert "No execution found for TaskID 7" in capsys.readouterr().err

#####################################################
#                     Devices                       #
#####################################################

DEVICE = {'DeviceName': 'WS01', 'ResourceID': 16777220, 'UserAccountControl': 4096, 'VMTypeRaw': 1, 'ManagementAuthority': None}

def test_get_devices(fake, ctx, capsys):
	site(fake)
	fake.respond('ProductMajorVersion', rows = [{'': 15}])
	fake.respond('v_R_System', rows = [DEVICE])
	SCCMUtil.getDevices(ctx, 'WS', 10)

	query = fake.queries[-1]
	assert 'STRING_AGG' in query
	assert 'TOP 10' in query
	assert "sys.Name0 LIKE '%WS%'" in query
	out = capsys.readouterr().out
	assert "AccountStatus" in out
	assert "Enabled, WorkstationTrust" in out
	assert "Hyper-V" in out
	assert "UserAccountControl" not in out

def test_get_devices_legacy(fake, ctx):
	site(fake)
	fake.respond('ProductMajorVersion', rows = [{'': 13}])
	fake.respond('v_R_System', rows = [DEVICE])
	SCCMUtil.getDevices(ctx)

	query = fake.queries[-1]
	assert 'STRING_AGG' not in query
	assert 'FOR XML PATH' in query

def test_get_devices_string_agg_fallback(fake, ctx):
	site(fake)
	fake.respond('ProductMajorVersion', rows = [{'': 15}])
	fake.respond('STRING_AGG', errors = ["'STRING_AGG' is not a recognized built-in function name."])
	fake.respond('v_R_System', rows = [DEVICE])
	SCCMUtil.getDevices(ctx)
	assert 'FOR XML PATH' in fake.queries[-1]

def test_get_device(fake, ctx, tables, capsys):
	site(fake)
	fake.respond('v_DeploymentSummary', rows = [{'DeploymentID': '16777300', 'SoftwareName': '7-Zip', 'FeatureTypeRaw': 1, 'DeploymentIntentRaw': 1}])
	fake.respond('v_FullCollectionMembership', rows = [{'CollectionID': 'SMS00001', 'CollectionName': 'All Systems', 'MemberCount': 5, 'Type': 'Device'}])
	fake.respond("WHERE sys.Name0 = 'WS01'", rows = [{'ResourceID': 16777220, 'DeviceName': 'WS01', 'Domain': 'CORP'}])

	device = SCCMUtil.getDevice(ctx, 'WS01')

	assert device['ResourceID'] == 16777220
	assert "[+] Device: WS01 (ResourceID: 16777220)" in capsys.readouterr().out
	assert "WHERE cm.ResourceID = 16777220" in fake.queries[-1]
	collections, deployments = tables
	assert list(collections['CollectionID']) == ['SMS00001']
	assert list(deployments.columns) == ['DeploymentID', 'SoftwareName', 'DeploymentType', 'Intent']
	assert list(deployments['DeploymentType']) == ['Application']
	assert list(deployments['Intent']) == ['Required']

def test_get_device_not_found(fake, ctx, capsys):
	site(fake)
	assert SCCMUtil.getDevice(ctx, "o'neil") is None
	assert "WHERE sys.Name0 = 'o''neil';" in fake.queries[-1]
	assert "Device 'o'neil' not found in any ConfigMgr database" in capsys.readouterr().err

def test_get_collection(fake, ctx, tables, capsys):
	site(fake)
	fake.respond("dbo.v_Collection c\nWHERE", rows = [{'CollectionID': 'PS100010', 'Name': 'Servers', 'CollectionType': 2, 'MemberCount': 1}])
	fake.respond('v_DeploymentSummary ds', rows = [{'DeploymentID': '16777301', 'SoftwareName': 'Agent', 'FeatureType': 2, 'DeploymentIntent': 2}])
	fake.respond('v_R_System sys', rows = [{'DeviceName': 'SRV01', 'ResourceID': 16777230}])

	collection = SCCMUtil.getCollection(ctx, 'PS100010')

	assert list(collection['Name']) == ['Servers']
	out = capsys.readouterr().out
	assert "[+] Collection: Servers (PS100010)" in out
	assert "[+] Collection Members (1)" in out
	_, deployments, members = tables
	assert list(deployments.columns) == ['DeploymentID', 'SoftwareName', 'DeploymentType', 'Intent']
	assert list(deployments['DeploymentType']) == ['Program']
	assert list(deployments['Intent']) == ['Available']
	assert list(members['DeviceName']) == ['SRV01']

def test_get_empty_collection(fake, ctx, tables):
	site(fake)
	fake.respond("dbo.v_Collection c\nWHERE", rows = [{'CollectionID': 'PS100011', 'Name': 'Empty', 'CollectionType': 1, 'MemberCount': 0}])
	SCCMUtil.getCollection(ctx, 'PS100011')
	assert len(tables) == 2
	assert not any('v_R_User' in q for q in fake.queries)

def test_collection_members_query():
	assert 'v_R_System sys' in SCCMUtil.collectionMembersQuery('CM_PS1', 'SMS00001', 2)
	query = SCCMUtil.collectionMembersQuery('CM_PS1', 'SMS00002', 1)
	assert 'INNER JOIN [CM_PS1].dbo.v_R_User usr' in query
	assert "WHERE cm.CollectionID = 'SMS00002'" in query

def test_replace_column():
	table = dp.DataFrame([[1, 2, 3]], columns = ['a', 'b', 'c'])
	table = SCCMUtil.replaceColumn(table, 'b', 'B', lambda v: v * 10)
	assert list(table.columns) == ['a', 'B', 'c']
	assert list(table['B']) == [20]

#####################################################
#                     Content                       #
#####################################################

DEPLOYMENTS = [
	{'AdvertisementID': 'PS120001', 'AdvertisementName': 'Agent', 'OfferType': 0, 'AdvertFlags': 0x02000020, 'RemoteClientFlags': 0x00002008},
	{'AdvertisementID': 'PS120002', 'AdvertisementName': 'Agent (optional)', 'OfferType': 2, 'AdvertFlags': 0, 'RemoteClientFlags': 0x00000800},
]

def test_get_deployments_decodes_flags(fake, ctx, tables):
	site(fake)
	fake.respond('v_Advertisement', rows = DEPLOYMENTS)

	SCCMUtil.getDeployments(ctx, 'Agent')

	assert "adv.AdvertisementName LIKE '%Agent%' OR pk.Name LIKE '%Agent%'" in fake.queries[-1]
	table = tables[0]
	assert list(table.columns) == ['AdvertisementID', 'AdvertisementName', 'OfferType', 'AdvertFlags', 'RemoteClientFlags']
	assert list(table['OfferType']) == ['Required', 'Available']
	assert list(table['AdvertFlags']) == ['IMMEDIATE, NO_DISPLAY', 'None']
	assert list(table['RemoteClientFlags']) == ['RERUN_IF_FAILED, RUN_FROM_LOCAL_DISPPOINT', 'RERUN_ALWAYS']

def test_failed_site_database_is_skipped(fake, ctx, tables, capsys):
	sites(fake)
	fake.respond('[CM_PS1].dbo.v_Advertisement', errors = ["The SELECT permission was denied on the object 'v_Advertisement'."])
	fake.respond('[CM_PS2].dbo.v_Advertisement', rows = DEPLOYMENTS[:1])

	SCCMUtil.getDeployments(ctx)

	out, err = capsys.readouterr()
	assert "Failed to enumerate CM_PS1: The SELECT permission was denied" in err
	assert "ConfigMgr database: CM_PS2 (Site Code: PS2)" in out
	assert len(tables) == 1
	assert list(tables[0]['AdvertisementID']) == ['PS120001']

def test_get_packages_decodes_type(fake, ctx, tables):
	site(fake)
	fake.respond('v_Package p', rows = [
		{'PackageID': 'PS100001', 'Name': '7-Zip', 'PackageType': 0},
		{'PackageID': 'PS100002', 'Name': 'Windows 11', 'PackageType': 257},
		{'PackageID': 'PS100003', 'Name': 'Odd', 'PackageType': 42},
	])
	SCCMUtil.getPackages(ctx)
	assert list(tables[0]['PackageType']) == ['Package', 'OS Image', 'Unknown (42)']

def test_get_programs_decodes_flags(fake, ctx, tables):
	site(fake)
	fake.respond('v_Program pr', rows = [
		{'PackageID': 'PS100001', 'ProgramName': 'Install', 'ProgramFlags': 0x0000A000},
		{'PackageID': 'PS100002', 'ProgramName': 'Signed', 'ProgramFlags': -2147450880},
	])
	SCCMUtil.getPrograms(ctx)
	table = tables[0]
	assert list(table.columns) == ['PackageID', 'ProgramName', 'DecodedFlags', 'ProgramFlags']
	assert list(table['DecodedFlags']) == ['UNATTENDED; ADMINRIGHTS', 'ADMINRIGHTS; SHOW_IN_ARP']
	assert list(table['ProgramFlags']) == [0x0000A000, -2147450880]

############################################################
#                     Task Sequences                       #
############################################################

TASK_SEQUENCE = {'PackageID': 'PS100020', 'Name': 'Windows 11 OSD', 'BootImageID': 'PS100021', 'ReferencedContentCount': 2}

def test_get_task_sequences(fake, ctx, tables, capsys):
	site(fake)
	fake.respond('v_TaskSequencePackage ts', rows = [TASK_SEQUENCE])
	SCCMUtil.getTaskSequences(ctx, 'OSD')

	query = fake.queries[-1]
	assert 'TOP 50 ' in query
	assert "ts.Name LIKE '%OSD%' OR ts.PackageID LIKE '%OSD%'" in query
	assert 'LEFT JOIN [CM_PS1].dbo.v_BootImagePackage bi' in query
	assert list(tables[0]['PackageID']) == ['PS100020']
	assert "[+] Found 1 task sequence(s)" in capsys.readouterr().out

def test_get_task_sequence(fake, ctx, tables, capsys):
	site(fake)
	fake.respond('ORDER BY ref.ReferencePackageType', rows = [
		{'ReferencePackageID': 'PS100021', 'ReferencePackageType': 258, 'ContentName': 'Boot x64'},
		{'ReferencePackageID': 'PS100022', 'ReferencePackageType': 0, 'ContentName': 'Agent'},
	])
	fake.respond('dbo.v_Advertisement adv', rows = [
		{'AdvertisementID': 'PS120010', 'CollectionID': 'SMS00001', 'MemberCount': 5, 'DeploymentType': 'Required'},
		{'AdvertisementID': 'PS120011', 'CollectionID': 'PS100010', 'MemberCount': 3, 'DeploymentType': 'Available'},
	])
	fake.respond('v_TaskSequencePackage ts', rows = [TASK_SEQUENCE])

	ts = SCCMUtil.getTaskSequence(ctx, 'PS100020')

	assert list(ts['Name']) == ['Windows 11 OSD']
	_, refs, deployments = tables
	assert list(refs.columns) == ['ReferencePackageID', 'ContentType', 'ReferencePackageType', 'ContentName']
	assert list(refs['ContentType']) == ['Boot Image', 'Package']
	assert list(deployments['AdvertisementID']) == ['PS120010', 'PS120011']
	out = capsys.readouterr().out
	assert "[+] Task Sequence: Windows 11 OSD (PS100020)" in out
	assert "deployed to 2 collection(s), 8 device(s) potentially targeted" in out

def test_get_task_sequence_without_content(fake, ctx, tables, capsys):
	site(fake)
	fake.respond('v_TaskSequencePackage ts', rows = [dict(TASK_SEQUENCE, ReferencedContentCount = 0)])

	SCCMUtil.getTaskSequence(ctx, 'PS100020')

	assert not any('ORDER BY ref.ReferencePackageType' in q for q in fake.queries)
	assert len(tables) == 1
	err = capsys.readouterr().err
	assert "No referenced content found" in err
	assert "not deployed to any collections" in err

#############################################################
#                     Deployment Types                      #
#############################################################

def digest(technology, command, location):
	return (f"<AppMgmtDigest xmlns='{CMService.DIGEST_NS['p1']}'><DeploymentType><Technology>{technology}</Technology>"
			f"<Installer><Contents><Content><Location>{location}</Location></Content></Contents>"
			f"<InstallAction><Args><Arg Name='InstallCommandLine'>{command}</Arg></Args></InstallAction></Installer>"
			"</DeploymentType></AppMgmtDigest>")

ROWS = [
	{'CI_ID': 1, 'Title': 'Script app', 'SDMPackageDigest': digest('Script', 'powershell.exe -File a.ps1', '\\\\cm01\\apps\\a\\')},
	{'CI_ID': 2, 'Title': 'MSI app', 'SDMPackageDigest': digest('MSI', 'msiexec /i ' + 'x' * 200 + '.msi', '\\\\cm01\\apps\\' + 'y' * 120)},
]

def test_deployment_type_rows():
	results = SCCMUtil.deploymentTypeRows(ROWS)
	assert [r['CI_ID'] for r in results] == [1, 2]
	assert results[0]['InstallCommand'] == 'powershell.exe -File a.ps1'
	assert len(results[1]['InstallCommand']) == 153
	assert results[1]['InstallCommand'].endswith('...')
	assert len(results[1]['ContentLocation']) == 103
	assert 'Hosting' not in results[0]

def test_deployment_type_filters():
	assert [r['CI_ID'] for r in SCCMUtil.deploymentTypeRows(ROWS, technology = 'msi')] == [2]
	assert [r['CI_ID'] for r in SCCMUtil.deploymentTypeRows(ROWS, filter = 'A.PS1')] == [1]
	assert SCCMUtil.deploymentTypeRows(ROWS, technology = 'App-V') == []

def test_deployment_type_detailed():
	results = SCCMUtil.deploymentTypeRows(ROWS[:1], detailed = True)
	assert 'Hosting' in results[0]
	assert 'DetectionMethodSummary' in results[0]

##################################################
#                     Misc                       #
##################################################

@pytest.mark.parametrize("limit,clause", [(50, "TOP 50 "), (0, ""), (None, "")])
def test_top_clause(limit, clause):
	assert SCCMUtil.topClause(limit) == clause

def test_no_site_database(fake, ctx, capsys):
	fake.respond('DB_NAME', rows = [{'': 'master'}])
	SCCMUtil.getServers(ctx)
	assert "[-] No ConfigMgr databases found" in capsys.readouterr().err
