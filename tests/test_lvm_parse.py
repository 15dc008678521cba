from carina.lvm_parse import parse_lvs, parse_pvs, parse_vgs

VGS = (
    "  LVM2_VG_NAME='lvmvg',LVM2_PV_COUNT='1',LVM2_LV_COUNT='0',LVM2_VG_ATTR='wz--n-',"
    "LVM2_VG_SIZE='16101933056',LVM2_VG_FREE='16101933056'\n"
    "  LVM2_VG_NAME='v1',LVM2_PV_COUNT='2',LVM2_LV_COUNT='0',LVM2_VG_ATTR='wz--n-',"
    "LVM2_VG_SIZE='32203866112',LVM2_VG_FREE='32203866112'"
)

LVS = (
    "  LVM2_LV_NAME='t1',LVM2_LV_PATH='/dev/v1/t1',LVM2_LV_SIZE='1073741824',"
    "LVM2_LV_KERNEL_MAJOR='252',LVM2_LV_KERNEL_MINOR='0',LVM2_ORIGIN='',LVM2_ORIGIN_SIZE='',"
    "LVM2_POOL_LV='',LVM2_THIN_COUNT='',LVM2_LV_TAGS='t1'\n"
    "  LVM2_LV_NAME='t5',LVM2_LV_PATH='',LVM2_LV_SIZE='6979321856',"
    "LVM2_LV_KERNEL_MAJOR='252',LVM2_LV_KERNEL_MINOR='3',LVM2_ORIGIN='',LVM2_ORIGIN_SIZE='',"
    "LVM2_POOL_LV='',LVM2_THIN_COUNT='1',LVM2_LV_TAGS=''\n"
    "  LVM2_LV_NAME='m2',LVM2_LV_PATH='/dev/v1/m2',LVM2_LV_SIZE='2147483648',"
    "LVM2_LV_KERNEL_MAJOR='252',LVM2_LV_KERNEL_MINOR='5',LVM2_ORIGIN='',LVM2_ORIGIN_SIZE='',"
    "LVM2_POOL_LV='t5',LVM2_THIN_COUNT='',LVM2_LV_TAGS=''"
)

PVS = (
    "  LVM2_PV_NAME='/dev/loop2',LVM2_VG_NAME='lvmvg',LVM2_PV_FMT='lvm2',"
    "LVM2_PV_ATTR='a--',LVM2_PV_SIZE='16101933056',LVM2_PV_FREE='16101933056'"
)


def test_parse_vgs_sample():
    vgs = parse_vgs(VGS)
    assert [vg.vg_name for vg in vgs] == ["lvmvg", "v1"]
    assert vgs[1].pv_count == 2
    assert vgs[1].vg_size == 32203866112
    assert vgs[0].vg_attr == "wz--n-"
    assert all(vg.pvs == [] for vg in vgs)
    assert vgs[0].pvs is not vgs[1].pvs


def test_parse_vgs_empty():
    assert parse_vgs("") == []


def test_parse_lvs_filters_by_prefix():
    lvs = parse_lvs(LVS, ("t",))
    assert [lv.lv_name for lv in lvs] == ["t1", "t5"]
    assert lvs[0].lv_path == "/dev/v1/t1"
    assert lvs[0].lv_tags == "t1"
    assert lvs[1].thin_count == 1
    assert lvs[1].lv_kernel_minor == 3


def test_parse_lvs_accepts_single_prefix_string():
    lvs = parse_lvs(LVS, "m")
    assert [lv.pool_lv for lv in lvs] == ["t5"]
    assert lvs[0].lv_size == 2147483648


def test_parse_lvs_no_prefix_match_gives_nothing():
    assert parse_lvs(LVS, ("volume-",)) == []
    assert parse_lvs("", ("t",)) == []


def test_parse_lvs_empty_numbers_are_zero():
    lvs = parse_lvs(LVS, ("t1",))
    assert lvs[0].origin_size == 0
    assert lvs[0].thin_count == 0


def test_parse_lvs_data_percent_and_active():
    text = "LVM2_LV_NAME='t9',LVM2_DATA_PERCENT='12.5',LVM2_LV_ACTIVE='active',LVM2_LV_ATTR='-wi-a-----'"
    [lv] = parse_lvs(text, ("t",))
    assert lv.data_percent == 12.5
    assert lv.lv_active == "active"
    assert lv.lv_attr == "-wi-a-----"


def test_parse_lvs_bad_float_is_zero():
    [lv] = parse_lvs("LVM2_LV_NAME='t1',LVM2_DATA_PERCENT='n/a'", ("t",))
    assert lv.data_percent == 0.0


def test_parse_pvs_sample():
    [pv] = parse_pvs(PVS)
    assert pv.pv_name == "/dev/loop2"
    assert pv.vg_name == "lvmvg"
    assert pv.pv_fmt == "lvm2"
    assert pv.pv_attr == "a--"
    assert pv.pv_size == pv.pv_free == 16101933056


def test_parse_pvs_ignores_unknown_fields(caplog):
    [pv] = parse_pvs("LVM2_PV_NAME='/dev/loop5',LVM2_OTHER='x'")
    assert pv.pv_name == "/dev/loop5"
    assert "LVM2_OTHER" in caplog.text


def test_parse_pvs_skips_blank_lines():
    pvs = parse_pvs(PVS + "\n\n" + PVS + "\n")
    assert len(pvs) == 2
    assert pvs[0] == pvs[1]