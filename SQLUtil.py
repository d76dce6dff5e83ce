#!/usr/bin/python3

##########################################################
#                     Dependencies                       #
##########################################################

# MSSQL / Active Directory through MSSQL / ConfigMgr site databases
from Utils.MSSQL import MSSQLUtil
from Utils.DOMAIN import DomainUtil
from Utils.SCCM import SCCMUtil

# OUTPUT = Markdown/CSV
from Utils.OUTPUT import OutputUtil

# Others
import argparse

##################################################
#                     MAIN                       #
##################################################

def linked_chain(value):
	try:
		return MSSQLUtil.parse_chain(value)
	except ValueError as e:
		raise argparse.ArgumentTypeError(str(e))

def build_parser():
	parser = argparse.ArgumentParser(description = "SQL Util: Helper for MSSQL servers, Active Directory through MSSQL and ConfigMgr site databases", formatter_class = argparse.RawTextHelpFormatter)

	auth_group = parser.add_argument_group('[[ Authentication ]]')
	auth_group.add_argument("-t", "--target", help = "Target IP/Hostname file, commas separated list or CIDR. FQDN required for Kerberos authentication")
	auth_group.add_argument("-u", "--username", help = "Username for authentication", default = "")
	auth_group.add_argument("-p", "--password", help = "Password for authentication", default = "")
	auth_group.add_argument("-d", "--domain", help = "Domain for authentication (Target hostname or '.' for local account)", default = "")
	auth_group.add_argument("-nt", "--ntHash", help = "NT Hash for NTLM authentication", default = "")
	auth_group.add_argument("-k", "--aesKey", help = "AES 128/256 key for Kerberos authentication")
	auth_group.add_argument("-cc", "--ccache", help = "TGT/ST for Kerberos authentication")
	auth_group.add_argument("--kdcHost", help = "KDC IP/Hostname for Kerberos authentication")
	auth_group.add_argument("--port", help = "Target(s) port. Default = 1433", type = int, default = 1433)
	auth_group.add_argument("--database", help = "Target(s) database. Default = None (login default database)")
	auth_group.add_argument("--windowsAuth", help = "Use Windows authentication or not", action = "store_true")

	context_group = parser.add_argument_group('[[ Context ]]')
	context_group.add_argument("--impersonate", metavar = "LOGIN", help = "Impersonate a login (EXECUTE AS LOGIN) before running actions")
	context_group.add_argument("--links", metavar = "CHAIN", help = "Linked servers chain to execute through, in the form of <Host>[:<Login>][@<Database>],...", type = linked_chain, default = [])

	output_group = parser.add_argument_group('[[ Output ]]')
	output_group.add_argument("-o", "--output", help = "Tables output format. Default = markdown", choices = OutputUtil.FORMATS, default = "markdown")

	detection_group = parser.add_argument_group('[[ Detections ]]')
	detection_group.add_argument("-throttle", help = "Seconds to wait between each targets. Default = None", type = int)
	detection_group.add_argument("-throttleDeep", help = "Seconds to wait between actions and pre-defined requests (RID cycling batches, ConfigMgr databases). Default = None", type = int)
	detection_group.add_argument("-shuffle", help = "Shuffle targets. Default = False", action = "store_true")

	subparsers = parser.add_subparsers(dest = "module", required = True, help = "Module to use")
	mssql_parser = subparsers.add_parser('MSSQL', help = "Pre-defined/raw queries for MSSQL", formatter_class = argparse.RawTextHelpFormatter)
	MSSQLUtil.add_arguments(mssql_parser)
	domain_parser = subparsers.add_parser('DOMAIN', help = "Domain SID, AD groups and RID cycling through MSSQL", formatter_class = argparse.RawTextHelpFormatter)
	DomainUtil.add_arguments(domain_parser)
	sccm_parser = subparsers.add_parser('SCCM', help = "Enumerate and abuse ConfigMgr site databases", formatter_class = argparse.RawTextHelpFormatter)
	SCCMUtil.add_arguments(sccm_parser)

	return parser

def main(argv = None):
	parser = build_parser()
	args = parser.parse_args(argv)

	OutputUtil.set_format(args.output)

	if args.module == 'MSSQL':
		MSSQLUtil.handle_arguments(args)
	elif args.module == 'DOMAIN':
		DomainUtil.handle_arguments(args)
	elif args.module == 'SCCM':
		SCCMUtil.handle_arguments(args)

if __name__ == "__main__":
	main()
