import pytest

import SQLUtil
from Utils.MSSQL import MSSQLUtil
from Utils.DOMAIN import DomainUtil
from Utils.SCCM import SCCMUtil
from Utils.OUTPUT import OutputUtil

def parse(*argv):
	return SQLUtil.build_parser().parse_args(list(argv))

@pytest.fixture
def captured(monkeypatch):
	calls = {}
	def capture(name):
		def runTargets(args, actions):
			calls[name] = [(action.__name__, params) for action, params in actions]
		return runTargets
	monkeypatch.setattr(MSSQLUtil, 'runTargets', capture('MSSQL'))
	monkeypatch.setattr(DomainUtil, 'runTargets', capture('DOMAIN'))
	monkeypatch.setattr(SCCMUtil, 'runTargets', capture('SCCM'))
	return calls

def test_links():
	args = parse('-t', 'sql01', '--links', 'SQL02:sa,SQL03@CM_PS1', 'MSSQL', '--whoami')
	assert [str(s) for s in args.links] == ['SQL02:sa', 'SQL03@CM_PS1']
	assert parse('-t', 'sql01', 'MSSQL', '--whoami').links == []

def test_invalid_links():
	with pytest.raises(SystemExit):
		parse('-t', 'sql01', '--links', 'SQL02:', 'MSSQL', '--whoami')

def test_module_required():
	with pytest.raises(SystemExit):
		parse('-t', 'sql01')

def test_rid_cycle_argument():
	assert parse('DOMAIN', '--ridCycle').ridCycle == DomainUtil.DEFAULT_MAX_RID
	assert parse('DOMAIN', '--ridCycle', '500').ridCycle == 500
	assert parse('DOMAIN').ridCycle is None
	with pytest.raises(SystemExit):
		parse('DOMAIN', '--ridCycle', '0')
	with pytest.raises(SystemExit):
		parse('DOMAIN', '--ridCycle', '--bash', '--python')

def test_main_mssql(captured):
	SQLUtil.main(['-t', 'sql01', '-o', 'csv', 'MSSQL', '--info', '--rawQuery', 'SELECT 1', '--haveRole', 'sysadmin'])
	assert OutputUtil.get_format() == 'csv'
	assert captured['MSSQL'] == [('getInfo', []), ('haveRole', ['sysadmin']), ('rawQuery', ['SELECT 1'])]

def test_main_domain(captured):
	SQLUtil.main(['-t', 'sql01', 'DOMAIN', '--domainSid', '--ridCycle', '2000', '--python'])
	assert captured['DOMAIN'] == [('domainSid', []), ('ridCycle', [2000, 'python'])]

def test_main_sccm(captured):
	SQLUtil.main(['-t', 'sql01', 'SCCM', '--devices', '--filter', 'WS', '--scriptRun', 'GUID-1', '--device', '16777220', '--wait', '5'])
	assert captured['SCCM'] == [('getDevices', ['WS', SCCMUtil.DEFAULT_LIMIT]), ('runScript', ['GUID-1', 16777220, 5])]

def test_script_run_requires_device(captured, capsys):
	SQLUtil.main(['-t', 'sql01', 'SCCM', '--scriptRun', 'GUID-1'])
	assert 'SCCM' not in captured
	assert "--scriptRun requires --device" in capsys.readouterr().err

def test_main_sccm_details(captured):
	SQLUtil.main(['-t', 'sql01', 'SCCM', '--deviceInfo', 'WS01', '--collection', 'SMS00001', '--taskSequences', '--taskSequence', 'PS100020', '--filter', 'OSD'])
	assert captured['SCCM'] == [
		('getDevice', ['WS01']),
		('getCollection', ['SMS00001']),
		('getTaskSequences', ['OSD', SCCMUtil.DEFAULT_LIMIT]),
		('getTaskSequence', ['PS100020']),
	]
