#!/usr/bin/python3

##########################################################
#                     Dependencies                       #
##########################################################

from Utils.MSSQL.MSSQLUtil import SQLError, print_warning

# Others
import re, math, base64, hashlib
import xml.etree.ElementTree as ET

CMPIVOT_GUID = '7DC6B6F1-E7F6-43C1-96E0-E1D16BC25C14'

############################################################
#                     Site Databases                       #
############################################################

def get_site_code(database):
	if database is None or not database.upper().startswith('CM_'):
		return None
	return database[3:]

class CMService:
	def __init__(self, query_service):
		self.query_service = query_service
		self._views = {}

	def current_database(self):
		chain = self.query_service.chain
		if chain != [] and chain[-1].database:
			return chain[-1].database
		return self.query_service.execute_scalar("SELECT DB_NAME();")

	def get_sccm_databases(self):
		current = self.current_database()
		if current and str(current).upper().startswith('CM_'):
			return [str(current)]

		try:
			rows = self.query_service.execute("SELECT name FROM sys.databases WHERE name LIKE 'CM[_]%' ORDER BY name;")
		except SQLError as e:
			print_warning(f"Failed to enumerate ConfigMgr databases: {str(e)}")
			return []
		return [row['name'] for row in rows]

	def has_sccm_views(self, database):
		key = (self.query_service.execution_server, database)
		if key in self._views:
			return self._views[key]

		try:
			count = self.query_service.execute_scalar(f"SELECT COUNT(*) FROM [{database}].sys.views WHERE name LIKE 'vSMS[_]%';")
			self._views[key] = count is not None and int(count) > 0
		except SQLError:
			self._views[key] = False
		return self._views[key]

	def _view_or_table(self, database, viewQuery, tableQuery):
		if self.has_sccm_views(database):
			try:
				return self.query_service.execute_table(viewQuery)
			except SQLError as e:
				print_warning(f"View query failed, falling back to base tables: {str(e)}")
		return self.query_service.execute_table(tableQuery)

	def get_component_status(self, database):
		return self._view_or_table(database,
			f"SELECT * FROM [{database}].dbo.vSMS_SC_Component_Status ORDER BY ComponentName;",
			f"""
SELECT ComponentName, Name AS MachineName,
	CASE Flags WHEN 2 THEN 'OK' WHEN 5 THEN 'Warning' WHEN 6 THEN 'Error' ELSE 'Unknown' END AS Status,
	SiteNumber
FROM [{database}].dbo.SC_Component
ORDER BY ComponentName;""")

	def get_site_system_roles(self, database):
		return self._view_or_table(database,
			f"SELECT * FROM [{database}].dbo.vSMS_SC_SiteSystemRole ORDER BY ServerName, RoleName;",
			f"""
SELECT sr.NALPath, sr.RoleTypeID,
	CASE sr.RoleTypeID
		WHEN 2 THEN 'SMS Provider'
		WHEN 3 THEN 'Distribution Point'
		WHEN 4 THEN 'Management Point'
		WHEN 5 THEN 'Fallback Status Point'
		WHEN 6 THEN 'Site Server'
		WHEN 11 THEN 'Software Update Point'
		WHEN 16 THEN 'Application Catalog Web Service Point'
		WHEN 17 THEN 'Application Catalog Website Point'
		WHEN 21 THEN 'Reporting Services Point'
		WHEN 22 THEN 'Enrollment Point'
		WHEN 23 THEN 'Enrollment Proxy Point'
		WHEN 25 THEN 'Asset Intelligence Synchronization Point'
		WHEN 27 THEN 'State Migration Point'
		WHEN 28 THEN 'System Health Validator Point'
		WHEN 31 THEN 'Out Of Band Service Point'
		ELSE CAST(sr.RoleTypeID AS VARCHAR(10))
	END AS RoleName,
	sr.NALResType
FROM [{database}].dbo.SC_SysResUse sr
ORDER BY sr.NALPath, sr.RoleTypeID;""")

	def get_boundaries(self, database):
		return self._view_or_table(database,
			f"SELECT * FROM [{database}].dbo.vSMS_Boundary ORDER BY BoundaryType, DisplayName;",
			f"""
SELECT b.Name AS DisplayName,
	CASE b.BoundaryType
		WHEN 0 THEN 'IP Subnet'
		WHEN 1 THEN 'AD Site'
		WHEN 2 THEN 'IPv6 Prefix'
		WHEN 3 THEN 'IP Range'
		ELSE CAST(b.BoundaryType AS VARCHAR(10))
	END AS BoundaryType,
	b.Value, bg.Name AS BoundaryGroup, b.BoundaryID
FROM [{database}].dbo.BoundaryEx b
LEFT JOIN [{database}].dbo.BoundaryGroupMembers bgm ON b.BoundaryID = bgm.BoundaryID
LEFT JOIN [{database}].dbo.BoundaryGroup bg ON bgm.GroupID = bg.GroupID
ORDER BY b.BoundaryType, b.Name;""")

	def get_distribution_points(self, database):
		return self._view_or_table(database,
			f"SELECT * FROM [{database}].dbo.vSMS_DistributionPoint ORDER BY ServerName;",
			f"""
SELECT ServerName, SMSSiteCode AS SiteCode, NALPath, Description,
	CASE WHEN IsPXE = 1 THEN 'Yes' ELSE 'No' END AS PXE_Enabled,
	CASE WHEN IsActive = 1 THEN 'Active' ELSE 'Inactive' END AS Status
FROM [{database}].dbo.DistributionPoints
ORDER BY ServerName;""")

######################################################
#                     Decoders                       #
######################################################

def to_int(value):
	if value is None:
		return None
	if isinstance(value, float):
		if math.isnan(value):
			return None
		return int(value)
	try:
		return int(str(value).strip())
	except ValueError:
		return None

def _decode_enum(value, names, missing = "Unknown"):
	number = to_int(value)
	if number is None:
		return missing
	return names.get(number, f"Unknown ({number})")

def _decode_bits(value, bits, separator = ", "):
	number = to_int(value)
	if number is None:
		return "None"
	number &= 0xFFFFFFFF
	flags = [name for bit, name in bits if number & bit == bit]
	return separator.join(flags) if flags != [] else "None"

def decode_offer_type(value):
	return _decode_enum(value, {0: "Required", 2: "Available"})

RERUN_FLAGS = [
	(0x00000800, "RERUN_ALWAYS"),
	(0x00001000, "RERUN_NEVER"),
	(0x00002000, "RERUN_IF_FAILED"),
	(0x00004000, "RERUN_IF_SUCCEEDED"),
]

REMOTE_CLIENT_FLAGS = [
	(0x00000008, "RUN_FROM_LOCAL_DISPPOINT"),
	(0x00000010, "DOWNLOAD_FROM_LOCAL_DISPPOINT"),
	(0x00000020, "DONT_RUN_NO_LOCAL_DISPPOINT"),
	(0x00000040, "DOWNLOAD_FROM_REMOTE_DISPPOINT"),
	(0x00000080, "RUN_FROM_REMOTE_DISPPOINT"),
	(0x00000100, "DOWNLOAD_ON_DEMAND_FROM_LOCAL_DP"),
	(0x00000200, "DOWNLOAD_ON_DEMAND_FROM_REMOTE_DP"),
	(0x00000001, "BATTERY_POWER"),
	(0x00000002, "RUN_FROM_CD"),
	(0x00000004, "DOWNLOAD_FROM_CD"),
	(0x00000400, "BALLOON_REMINDERS_REQUIRED"),
	(0x00008000, "PERSIST_ON_WRITE_FILTER_DEVICES"),
	(0x00020000, "DONT_FALLBACK"),
	(0x00040000, "DP_ALLOW_METERED_NETWORK"),
]

def decode_remote_client_flags(value):
	number = to_int(value)
	if number is None:
		return "None"
	flags = []
	# Rerun behaviours are mutually exclusive, first match wins
	for bit, name in RERUN_FLAGS:
		if number & bit == bit:
			flags.append(name)
			break
	flags += [name for bit, name in REMOTE_CLIENT_FLAGS if number & bit == bit]
	return ", ".join(flags) if flags != [] else "None"

ADVERT_FLAGS = [
	(0x00000020, "IMMEDIATE"),
	(0x00000100, "ONSYSTEMSTARTUP"),
	(0x00000200, "ONUSERLOGON"),
	(0x00000400, "ONUSERLOGOFF"),
	(0x00001000, "OPTIONALPREDOWNLOAD"),
	(0x00008000, "WINDOWS_CE"),
	(0x00010000, "ENABLE_PEER_CACHING"),
	(0x00020000, "DONOT_FALLBACK"),
	(0x00040000, "ENABLE_TS_FROM_CD_AND_PXE"),
	(0x00080000, "APTSINTRANETONLY"),
	(0x00100000, "OVERRIDE_SERVICE_WINDOWS"),
	(0x00200000, "REBOOT_OUTSIDE_OF_SERVICE_WINDOWS"),
	(0x00400000, "WAKE_ON_LAN_ENABLED"),
	(0x00800000, "SHOW_PROGRESS"),
	(0x02000000, "NO_DISPLAY"),
	(0x04000000, "ONSLOWNET"),
	(0x10000000, "TARGETTOWINPE"),
	(0x20000000, "HIDDENINWINPE"),
]

def decode_advert_flags(value):
	return _decode_bits(value, ADVERT_FLAGS)

PROGRAM_FLAGS = [
	(0x00000001, "AUTHORIZED_DYNAMIC_INSTALL"),
	(0x00000002, "USECUSTOMPROGRESSMSG"),
	(0x00000010, "DEFAULT_PROGRAM"),
	(0x00000020, "DISABLEMOMALERTONRUNNING"),
	(0x00000040, "MOMALERTONFAIL"),
	(0x00000080, "RUN_DEPENDANT_ALWAYS"),
	(0x00000100, "WINDOWS_CE"),
	(0x00000400, "COUNTDOWN"),
	(0x00001000, "DISABLED"),
	(0x00002000, "UNATTENDED"),
	(0x00004000, "USERCONTEXT"),
	(0x00008000, "ADMINRIGHTS"),
	(0x00010000, "EVERYUSER"),
	(0x00020000, "NOUSERLOGGEDIN"),
	(0x00040000, "OKTOQUIT"),
	(0x00080000, "OKTOREBOOT"),
	(0x00100000, "USEUNCPATH"),
	(0x00200000, "PERSISTCONNECTION"),
	(0x00400000, "RUNMINIMIZED"),
	(0x00800000, "RUNMAXIMIZED"),
	(0x01000000, "HIDEWINDOW"),
	(0x02000000, "OKTOLOGOFF"),
	(0x04000000, "RUNACCOUNT"),
	(0x08000000, "ANY_PLATFORM"),
	(0x10000000, "STILL_RUNNING"),
	(0x20000000, "SUPPORT_UNINSTALL"),
	(0x40000000, "PLATFORM_NOT_SUPPORTED"),
	(0x80000000, "SHOW_IN_ARP"),
]

def decode_program_flags(value):
	# ProgramFlags is a signed INT column
	return _decode_bits(value, PROGRAM_FLAGS, "; ")

PACKAGE_TYPES = {
	0: "Package",
	3: "Driver Package",
	4: "Task Sequence",
	5: "Software Update",
	6: "Device Setting",
	7: "Virtual App",
	8: "Application",
	257: "OS Image",
	258: "Boot Image",
	259: "OS Installer",
}

def decode_package_type(value):
	return _decode_enum(value, PACKAGE_TYPES, "Package")

FEATURE_TYPES = {
	1: "Application",
	2: "Program",
	3: "Mobile Program",
	4: "Script",
	5: "Software Update",
	6: "Baseline",
	7: "Task Sequence",
	8: "Content Distribution",
	9: "Distribution Point Group",
	10: "Distribution Point Health",
	11: "Configuration Policy",
}

def decode_feature_type(value):
	return _decode_enum(value, FEATURE_TYPES)

def decode_deployment_intent(value):
	return _decode_enum(value, {1: "Required", 2: "Available", 3: "Simulate"})

ACCOUNT_CONTROL_FLAGS = [
	(0x0020, "NoPassword"),
	(0x0040, "PwdCantChange"),
	(0x0080, "EncryptedPwd"),
	(0x0200, "NormalAccount"),
	(0x0800, "InterdomainTrust"),
	(0x1000, "WorkstationTrust"),
	(0x2000, "ServerTrust"),
	(0x10000, "PwdNeverExpires"),
	(0x20000, "LockedOut"),
	(0x40000, "PwdExpired"),
	(0x80000, "TrustedForDelegation"),
]

def decode_account_control(value):
	number = to_int(value)
	if number is None:
		return None
	flags = ["Disabled" if number & 0x0002 else "Enabled"]
	flags += [name for bit, name in ACCOUNT_CONTROL_FLAGS if number & bit]
	return ", ".join(flags)

def decode_vm_type(value):
	if to_int(value) is None:
		return None
	return _decode_enum(value, {0: "Physical", 1: "Hyper-V", 2: "VMware", 3: "Xen", 4: "VirtualBox"})

def decode_management_authority(value):
	if to_int(value) is None:
		return None
	return _decode_enum(value, {0: "ConfigMgr", 1: "Intune", 2: "Co-Managed", 4: "EAS"})

def decode_script_approval(value):
	return _decode_enum(value, {0: "Waiting for approval", 1: "Declined", 3: "Approved"})

###################################################################
#                     SDM Package Digest                          #
###################################################################

DIGEST_NS = {'p1': 'http://schemas.microsoft.com/SystemCenterConfigurationManager/2009/AppMgmtDigest'}

BASIC_FIELDS = ['Technology', 'InstallCommand', 'ContentLocation', 'DetectionType', 'ExecutionContext']
DETAILED_FIELDS = ['Hosting', 'UninstallCommand', 'UninstallSetting', 'AllowUninstall', 'WorkingDirectory',
					'OnFastNetwork', 'OnSlowNetwork', 'PeerCache', 'FileName', 'FileSize', 'MaxExecuteTime',
					'RunAs32Bit', 'PostInstallBehavior', 'RequiresElevatedRights', 'RequiresUserInteraction',
					'RequiresReboot', 'UserInteractionMode', 'DetectionMethodSummary']

INSTALLER_ARGS = ['WorkingDirectory', 'MaxExecuteTime', 'RunAs32Bit', 'PostInstallBehavior', 'RequiresElevatedRights',
					'RequiresUserInteraction', 'RequiresReboot', 'UserInteractionMode']

class SDMPackageInfo:
	def __init__(self):
		for field in BASIC_FIELDS + DETAILED_FIELDS:
			setattr(self, field, '')

	def to_dict(self, detailed = False):
		fields = BASIC_FIELDS + DETAILED_FIELDS if detailed else BASIC_FIELDS
		return {field: getattr(self, field) for field in fields}

def _text(root, path):
	node = root.find(path, DIGEST_NS)
	if node is None or node.text is None:
		return ''
	return node.text

def _value(root, name):
	return _text(root, f'.//p1:{name}') or _text(root, f".//p1:Arg[@Name='{name}']")

def parse_sdm_package_digest(xml, detailed = False):
	info = SDMPackageInfo()
	if xml is None or str(xml).strip() == '':
		return info
	xml = str(xml)

	try:
		# ElementTree refuses str input carrying an encoding declaration
		root = ET.fromstring(re.sub(r'^\s*<\?xml[^>]*\?>', '', xml))
	except ET.ParseError:
		return info

	info.Technology = _text(root, './/p1:Technology')
	info.InstallCommand = _value(root, 'InstallCommandLine')
	info.ContentLocation = _text(root, './/p1:Location')
	info.ExecutionContext = _value(root, 'ExecutionContext')
	if root.find('.//p1:EnhancedDetectionMethod', DIGEST_NS) is not None:
		info.DetectionType = 'Enhanced'
	elif root.find('.//p1:DetectAction', DIGEST_NS) is not None:
		info.DetectionType = 'Script'

	if not detailed:
		return info

	info.Hosting = _text(root, './/p1:Hosting')
	info.UninstallCommand = _value(root, 'UninstallCommandLine')
	info.UninstallSetting = _text(root, './/p1:UninstallSetting')
	info.AllowUninstall = _text(root, './/p1:AllowUninstall')
	info.OnFastNetwork = _text(root, './/p1:OnFastNetwork')
	info.OnSlowNetwork = _text(root, './/p1:OnSlowNetwork')
	info.PeerCache = _text(root, './/p1:PeerCache')
	for name in INSTALLER_ARGS:
		setattr(info, name, _text(root, f".//p1:Arg[@Name='{name}']"))

	fileNode = root.find('.//p1:File', DIGEST_NS)
	if fileNode is not None:
		info.FileName = fileNode.get('Name', '')
		info.FileSize = fileNode.get('Size', '')

	summary = []
	if '<File' in xml:
		summary.append('File-based detection')
	if '<RegistryKey' in xml:
		summary.append('Registry-based detection')
	if '<Script' in xml:
		summary.append('Script-based detection (PowerShell/VBScript)')
	if 'ProductCode' in xml:
		summary.append('MSI Product Code detection')
	info.DetectionMethodSummary = ', '.join(summary) if summary != [] else 'Unknown detection method'

	return info

########################################################
#                     Scripts                          #
########################################################

def decode_script_content(blob):
	if blob is None:
		return ''
	if isinstance(blob, str):
		return blob
	blob = bytes(blob)
	if blob[:3] == b'\xef\xbb\xbf':
		return blob[3:].decode('utf-8', errors = 'replace')
	if blob[:2] == b'\xff\xfe':
		return blob[2:].decode('utf-16-le', errors = 'replace')
	if blob[:2] == b'\xfe\xff':
		return blob[2:].decode('utf-16-be', errors = 'replace')
	return blob.decode('utf-8', errors = 'replace')

def decode_params_definition(value):
	if value is None or str(value).strip() == '':
		return ''
	try:
		return base64.b64decode(str(value), validate = True).decode('ascii', errors = 'replace')
	except ValueError:
		return str(value)

def hash_script(content):
	return hashlib.sha256(content.encode('utf-16-le')).hexdigest().upper()

def build_script_task_param(guid, version, scriptHash):
	taskParam = (f"<ScriptContent ScriptGuid='{guid}'>"
				f"<ScriptVersion>{version}</ScriptVersion>"
				"<ScriptType>0</ScriptType>"
				f"<ScriptHash ScriptHashAlg='SHA256'>{scriptHash}</ScriptHash>"
				"<ScriptParameters></ScriptParameters>"
				"<ParameterGroupHash ParameterHashAlg='SHA256'></ParameterGroupHash>"
				"</ScriptContent>")
	return base64.b64encode(taskParam.encode('utf-8')).decode('ascii')
