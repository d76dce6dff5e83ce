#!/usr/bin/python3

##########################################################
#                     Dependencies                       #
##########################################################

# MSSQL connection and helpers
from Utils.MSSQL.MSSQLUtil import SQLError, print_yellow, print_exception, print_warning, maybeSleep, runTargets, escape

# SID parsing
from Utils.SID import SIDUtil

# OUTPUT = Markdown/CSV
from Utils.OUTPUT import OutputUtil

# Others
import sys, argparse
import pandas as dp

BATCH_SIZE = 1000
DEFAULT_MAX_RID = 10000

########################################################
#                     Domain SID                       #
########################################################

def get_domain_info(ctx):
	qs = ctx.query_service

	domain = qs.execute_scalar("SELECT DEFAULT_DOMAIN();")
	if domain is None or str(domain).strip() == '':
		print("[-] Could not determine DEFAULT_DOMAIN(). The server may not be domain-joined.", file = sys.stderr)
		return None
	domain = str(domain)

	raw = qs.execute_scalar(f"SELECT SUSER_SID('{escape(domain)}\\Domain Admins');")
	fullSid = SIDUtil.parse_sid(raw)
	if fullSid is None:
		print("[-] Could not obtain domain SID through SUSER_SID(). Ensure the server has access to the domain.", file = sys.stderr)
		return None

	domainSid = SIDUtil.get_domain_sid(fullSid)
	if domainSid is None:
		print(f"[-] Unexpected SID format: {fullSid}", file = sys.stderr)
		return None

	return {
		"Domain": domain,
		"Full SID (Domain Admins)": fullSid,
		"Domain SID": domainSid,
	}

def domainSid(ctx):
	print_yellow("[*] Retrieving domain SID")
	print_yellow("---")
	print()

	try:
		if ctx == '':
			print("[-] No connection available", file = sys.stderr)
			return

		info = get_domain_info(ctx)
		if info is None:
			return None
		print("[+] Domain SID information retrieved")
		OutputUtil.print_dict(info, "Property", "Value")
		return info
	except SQLError as e:
		print(f"[-] {str(e)}", file = sys.stderr)
	except KeyboardInterrupt:
		exit()
	except Exception as e:
		print_exception(e)

def adSid(ctx):
	print_yellow("[*] Retrieving SID of the current login")
	print_yellow("---")
	print()

	try:
		if ctx == '':
			print("[-] No connection available", file = sys.stderr)
			return

		rows = ctx.query_service.execute("SELECT SYSTEM_USER AS [Login], SUSER_SID(SYSTEM_USER) AS [SID];")
		if rows == []:
			print("[-] Could not obtain the SID of the current login", file = sys.stderr)
			return None

		login = rows[0]['Login']
		sid = SIDUtil.parse_sid(rows[0]['SID'])
		if sid is None:
			print(f"[-] Could not parse the SID of {login}", file = sys.stderr)
			return None

		details = {"System User": login, "SID": sid}
		if SIDUtil.is_domain_sid(sid):
			details["Domain SID"] = SIDUtil.get_domain_sid(sid)
			details["RID"] = SIDUtil.get_rid(sid)
		else:
			details["Type"] = "Local or Built-in Account"
		OutputUtil.print_dict(details, "Property", "Value")
		return details
	except SQLError as e:
		print(f"[-] {str(e)}", file = sys.stderr)
	except KeyboardInterrupt:
		exit()
	except Exception as e:
		print_exception(e)

#######################################################
#                     AD Groups                       #
#######################################################

def _logininfo_column(row, name):
	for key, value in row.items():
		if key.lower() == name:
			return value
	return None

def adGroups(ctx):
	print_yellow("[*] Retrieving Active Directory group memberships")
	print_yellow("---")
	print()

	try:
		if ctx == '':
			print("[-] No connection available", file = sys.stderr)
			return

		login = ctx.query_service.execute_scalar("SELECT SYSTEM_USER;")
		rows = ctx.query_service.execute(f"EXEC master.dbo.xp_logininfo @acctname = '{escape(login)}', @option = 'all';")
		if rows == []:
			print_warning("No group memberships found or user is not a domain account")
			return []

		groups = []
		for row in rows:
			kind = _logininfo_column(row, 'type') or ''
			if 'group' not in str(kind).lower():
				continue
			groups.append({
				"Group Name": _logininfo_column(row, 'permission path') or _logininfo_column(row, 'account name'),
				"Type": kind,
				"Privilege": _logininfo_column(row, 'privilege'),
			})

		if groups == []:
			print_warning("User is not a member of any domain groups")
			return groups

		print(f"[+] Found {len(groups)} AD group membership(s)")
		OutputUtil.print_table(dp.DataFrame(groups))
		return groups
	except SQLError as e:
		print(f"[-] {str(e)}", file = sys.stderr)
	except KeyboardInterrupt:
		exit()
	except Exception as e:
		print_exception(e)

def groupMembers(ctx, group):
	print_yellow(f"[*] Retrieving members of AD group {group}")
	print_yellow("---")
	print()

	try:
		if ctx == '':
			print("[-] No connection available", file = sys.stderr)
			return

		if '\\' not in group:
			print("[-] Group name must be written as DOMAIN\\Group", file = sys.stderr)
			return None

		table = ctx.query_service.execute_table(f"EXEC master.dbo.xp_logininfo @acctname = '{escape(group)}', @option = 'members';")
		if len(table) == 0:
			print_warning(f"No members found for {group}")
		else:
			print(f"[+] Found {len(table)} member(s)")
		OutputUtil.print_table(table)
		return table
	except SQLError as e:
		print(f"[-] {str(e)}", file = sys.stderr)
	except KeyboardInterrupt:
		exit()
	except Exception as e:
		print_exception(e)

#########################################################
#                     RID Cycling                       #
#########################################################

def rid_cycle(ctx, max_rid = DEFAULT_MAX_RID):
	"""
	Resolve every RID from 0 to max_rid against the domain SID with SUSER_SNAME.

	Each batch sends one SELECT per RID, so row i of a batch answers RID start + i.
	"""
	info = get_domain_info(ctx)
	if info is None:
		print("[-] Failed to retrieve domain SID. Cannot proceed with RID cycling.", file = sys.stderr)
		return []

	domain = info["Domain"]
	prefix = info["Domain SID"]
	print(f"[+] Target domain: {domain}")
	print(f"[+] Domain SID prefix: {prefix}")
	print()

	results = []
	for start in range(0, max_rid + 1, BATCH_SIZE):
		count = min(BATCH_SIZE, max_rid - start + 1)
		query = "; ".join(f"SELECT SUSER_SNAME(SID_BINARY(N'{prefix}-{start + i}'))" for i in range(count))
		try:
			rows = ctx.query_service.execute(query)
		except SQLError as e:
			print_warning(f"Batch failed for RIDs {start}-{start + count - 1}: {str(e)}")
			maybeSleep()
			continue

		for i, row in enumerate(rows):
			values = list(row.values())
			name = values[0] if values != [] else None
			if name is None:
				continue
			name = str(name)
			if name == '' or name.upper() == 'NULL':
				continue
			rid = start + i
			print(f"\t[+] RID {rid}: {name}")
			results.append({
				"RID": rid,
				"Domain": domain,
				"Username": name.split('\\', 1)[1] if '\\' in name else name,
				"Full Account": name,
			})
		maybeSleep()

	return results

def format_bash(results):
	lines = ["declare -A rid_users=("]
	for entry in results:
		username = entry["Username"].replace("'", "'\\''")
		lines.append(f"  [{entry['RID']}]='{username}'")
	lines.append(")")
	return "\n".join(lines)

def format_python(results):
	lines = ["rid_users = {"]
	for i, entry in enumerate(results):
		username = entry["Username"].replace("\\", "\\\\").replace("'", "\\'")
		comma = "," if i < len(results) - 1 else ""
		lines.append(f"    {entry['RID']}: '{username}'{comma}")
	lines.append("}")
	return "\n".join(lines)

def ridCycle(ctx, max_rid, outputFormat = None):
	print_yellow(f"[*] RID cycling (max RID: {max_rid})")
	print_yellow("---")
	print()

	try:
		if ctx == '':
			print("[-] No connection available", file = sys.stderr)
			return

		print("[+] This enumerates domain objects (users and groups), not group membership")
		results = rid_cycle(ctx, max_rid)
		print()
		print(f"[+] RID cycling completed. Found {len(results)} domain accounts.")
		if results == []:
			return results

		print()
		if outputFormat == 'bash':
			print(format_bash(results))
		elif outputFormat == 'python':
			print(format_python(results))
		else:
			OutputUtil.print_table(dp.DataFrame(results, columns = ["RID", "Domain", "Username", "Full Account"]))
		return results
	except SQLError as e:
		print(f"[-] {str(e)}", file = sys.stderr)
	except KeyboardInterrupt:
		exit()
	except Exception as e:
		print_exception(e)

##################################################
#                     MAIN                       #
##################################################

def positive_int(value):
	try:
		number = int(value)
	except ValueError:
		raise argparse.ArgumentTypeError(f"{value} is not an integer")
	if number <= 0:
		raise argparse.ArgumentTypeError(f"{value} is not a positive integer")
	return number

def add_arguments(parser):
	domain_group = parser.add_argument_group('[[ Domain ]]')
	domain_group.add_argument("--domainSid", help = "Get the domain name and domain SID", action = "store_true")
	domain_group.add_argument("--adSid", help = "Get the SID of the current login", action = "store_true")
	domain_group.add_argument("--adGroups", help = "List AD groups of the current login through xp_logininfo", action = "store_true")
	domain_group.add_argument("--groupMembers", metavar = "DOMAIN\\GROUP", help = "List members of an AD group through xp_logininfo")

	rid_group = parser.add_argument_group('[[ RID Cycling ]]')
	rid_group.add_argument("--ridCycle", metavar = "MAX_RID", help = f"Enumerate domain accounts by RID up to MAX_RID (default: {DEFAULT_MAX_RID})", nargs = '?', const = DEFAULT_MAX_RID, type = positive_int)
	format_group = rid_group.add_mutually_exclusive_group()
	format_group.add_argument("--bash", help = "Print RID cycling results as a bash associative array", action = "store_true")
	format_group.add_argument("--python", help = "Print RID cycling results as a python dictionary", action = "store_true")

def handle_arguments(args):
	actions = []

	if args.domainSid:
		actions.append((domainSid, []))
	if args.adSid:
		actions.append((adSid, []))
	if args.adGroups:
		actions.append((adGroups, []))
	if args.groupMembers != None:
		actions.append((groupMembers, [args.groupMembers]))
	if args.ridCycle != None:
		outputFormat = 'bash' if args.bash else 'python' if args.python else None
		actions.append((ridCycle, [args.ridCycle, outputFormat]))

	runTargets(args, actions)
