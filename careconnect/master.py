"""マスタデータ：東京都の地区・障害福祉サービス種別"""

# 東京都の市区町村（23区 → 市部 → 西多摩郡 → 島しょ部）
TOKYO_DISTRICTS = [
    # 23区
    "千代田区", "中央区", "港区", "新宿区", "文京区", "台東区", "墨田区", "江東区",
    "品川区", "目黒区", "大田区", "世田谷区", "渋谷区", "中野区", "杉並区", "豊島区",
    "北区", "荒川区", "板橋区", "練馬区", "足立区", "葛飾区", "江戸川区",
    # 市部
    "八王子市", "立川市", "武蔵野市", "三鷹市", "青梅市", "府中市", "昭島市",
    "調布市", "町田市", "小金井市", "小平市", "日野市", "東村山市", "国分寺市",
    "国立市", "福生市", "狛江市", "東大和市", "清瀬市", "東久留米市", "武蔵村山市",
    "多摩市", "稲城市", "羽村市", "あきる野市", "西東京市",
    # 西多摩郡
    "瑞穂町", "日の出町", "檜原村", "奥多摩町",
    # 島しょ部
    "大島町", "利島村", "新島村", "神津島村", "三宅村", "御蔵島村",
    "八丈町", "青ヶ島村", "小笠原村",
]

# 「すべての地区」を表す値（地区フィルタなし）
ALL_DISTRICTS = {"", "all", "すべての地区"}

DISABILITY_TYPES = ["身体障害", "知的障害", "精神障害", "発達障害", "難病等", "その他"]

SERVICE_CATEGORIES = [
    "訪問系サービス",
    "日中活動系サービス",
    "施設系サービス",
    "居住系サービス",
    "訓練系・就労系サービス",
    "障害児通所系サービス",
    "障害児入所系サービス",
    "相談系サービス",
]

# サービス種別マスタ: id → (名称, カテゴリ, 説明)
SERVICE_CATALOG = {
    1: ("居宅介護", "訪問系サービス", "自宅で入浴、排せつ、食事の介護などを行います"),
    2: ("重度訪問介護", "訪問系サービス", "重度の方への総合的な介護支援を行います"),
    3: ("同行援護", "訪問系サービス", "視覚障害の方への外出時の援護を行います"),
    4: ("行動援護", "訪問系サービス", "行動時の危険回避のための支援を行います"),
    5: ("重度障害者等包括支援", "訪問系サービス", "介護の必要性が高い方へ複数のサービスを包括的に提供します"),
    6: ("療養介護", "日中活動系サービス", "医療と常時介護を必要とする方への支援"),
    7: ("生活介護", "日中活動系サービス", "日中の介護と創作・生産活動の機会を提供"),
    8: ("短期入所", "日中活動系サービス", "短期間の入所による介護を行います"),
    9: ("施設入所支援", "施設系サービス", "施設に入所する方へ夜間や休日の介護を行います"),
    10: ("共同生活援助", "居住系サービス", "グループホームでの共同生活支援"),
    11: ("自立生活援助", "居住系サービス", "一人暮らしのための生活支援"),
    12: ("自立訓練(機能訓練)", "訓練系・就労系サービス", "身体機能の維持・向上のための訓練"),
    13: ("自立訓練(生活訓練)", "訓練系・就労系サービス", "生活能力の維持・向上のための訓練"),
    14: ("宿泊型自立訓練", "訓練系・就労系サービス", "居室を提供し生活能力向上のための訓練を行います"),
    15: ("就労移行支援", "訓練系・就労系サービス", "一般企業への就労を目指す訓練"),
    16: ("就労継続支援A型", "訓練系・就労系サービス", "雇用契約による生産活動の機会を提供"),
    17: ("就労継続支援B型", "訓練系・就労系サービス", "非雇用での生産活動の機会を提供"),
    18: ("就労定着支援", "訓練系・就労系サービス", "就労継続のための支援"),
    19: ("児童発達支援", "障害児通所系サービス", "未就学児への発達支援"),
    20: ("医療型児童発達支援", "障害児通所系サービス", "肢体不自由児への発達支援と治療"),
    21: ("放課後等デイサービス", "障害児通所系サービス", "就学児の放課後・休日支援"),
    22: ("居宅訪問型児童発達支援", "障害児通所系サービス", "外出が困難な障害児の居宅を訪問して発達支援を行います"),
    23: ("保育所等訪問支援", "障害児通所系サービス", "保育所等を訪問し集団生活への適応を支援します"),
    24: ("福祉型障害児入所施設", "障害児入所系サービス", "施設に入所する障害児への保護と日常生活の指導"),
    25: ("医療型障害児入所施設", "障害児入所系サービス", "施設に入所する障害児への保護・指導と治療"),
    26: ("地域相談支援(地域移行)", "相談系サービス", "施設・病院からの地域移行に向けた支援"),
    27: ("地域相談支援(地域定着)", "相談系サービス", "地域生活を継続するための常時の連絡体制の確保"),
    28: ("計画相談支援", "相談系サービス", "サービス等利用計画の作成"),
    29: ("障害児相談支援", "相談系サービス", "障害児支援利用計画の作成"),
}

# CSVのサービス種別名 → サービスID（全角・半角の揺れを吸収）
SERVICE_IDS_BY_NAME = {name: sid for sid, (name, _, _) in SERVICE_CATALOG.items()}
SERVICE_IDS_BY_NAME.update({
    "就労継続支援Ａ型": 16,
    "就労継続支援Ｂ型": 17,
})
