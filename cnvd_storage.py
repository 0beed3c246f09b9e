import os
import json
from datetime import datetime

import pandas as pd
from sqlalchemy import create_engine, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from cnvd_utils import CNVDError, get_current_time

COLUMNS = ['url', 'title', 'cnvd_id', 'publishedDate', 'hazard', 'product', 'description', 'types', 'reference',
           'attachment', 'complete']


def save_json(items, path):
    """保存为JSON数组"""
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with open(path, 'w', encoding='utf8') as f:
        json.dump([item.to_dict() for item in items], f, ensure_ascii=False, indent=4)
    print(f'[{get_current_time()}][+] 已保存 {len(items)} 条记录到 {path}')
    return path


def save_csv(items, path):
    """保存为CSV，utf-8-sig 便于Excel直接打开"""
    df = pd.DataFrame([item.to_dict() for item in items], columns=COLUMNS)
    df.to_csv(path, index=False, encoding='utf-8-sig')
    print(f'[{get_current_time()}][+] 已保存 {len(df)} 条记录到 {path}')
    return path


def save_failed_list(items, output_dir='.'):
    """保存详情页获取失败（只有列表页信息）的CNVD编号，没有则不生成文件"""
    failed = [item for item in items if not item.complete]
    if not failed:
        return None
    os.makedirs(output_dir, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    failed_file = os.path.join(output_dir, f'failed_cnvd_{timestamp}.txt')
    with open(failed_file, 'w', encoding='utf-8') as f:
        f.write(f'爬取时间: {get_current_time()}\n')
        f.write(f'失败数量: {len(failed)}\n\n')
        for item in failed:
            f.write(f'{item.cnvd_id}\t{item.url}\n')
    print(f'[{get_current_time()}][+] 失败列表已保存到: {failed_file}')
    return failed_file


class CNVDDatabase:
    """数据库操作类"""

    CREATE_TABLE = """
        CREATE TABLE IF NOT EXISTS cnvd_vuln (
            cnvd_id VARCHAR(32) PRIMARY KEY,
            url VARCHAR(255) NOT NULL,
            title TEXT NOT NULL,
            published_date VARCHAR(32),
            hazard VARCHAR(16),
            product TEXT,
            description TEXT,
            types VARCHAR(255),
            reference TEXT,
            attachment TEXT,
            complete BOOLEAN
        )
    """

    def __init__(self, db_url):
        try:
            self.engine = create_engine(db_url, pool_pre_ping=True, pool_recycle=3600)
            Session = sessionmaker(bind=self.engine)
            self.session = Session()
            self.session.execute(text(self.CREATE_TABLE))
            self.session.commit()
            print(f'[{get_current_time()}][+] 数据库连接成功')
        except SQLAlchemyError as e:
            raise CNVDError(f'数据库连接失败: {e}') from e

    def batch_check_cnvd_exists(self, cnvd_ids):
        """批量检查CNVD编号是否存在"""
        if not cnvd_ids:
            return set()

        # 构建IN查询
        placeholders = ','.join([f':id{i}' for i in range(len(cnvd_ids))])
        query = text(f"SELECT cnvd_id FROM cnvd_vuln WHERE cnvd_id IN ({placeholders})")
        params = {f'id{i}': cnvd_id for i, cnvd_id in enumerate(cnvd_ids)}

        result = self.session.execute(query, params).fetchall()
        return set(row[0] for row in result)

    def save_items(self, items, batch_size=100):
        """写入数据库中还不存在的记录，返回写入条数"""
        query = text(
            "INSERT INTO cnvd_vuln (cnvd_id, url, title, published_date, hazard, product, description, types, "
            "reference, attachment, complete) VALUES (:cnvd_id, :url, :title, :published_date, :hazard, :product, "
            ":description, :types, :reference, :attachment, :complete)"
        )
        saved = 0
        try:
            for i in range(0, len(items), batch_size):
                batch = items[i:i + batch_size]
                exists = self.batch_check_cnvd_exists([item.cnvd_id for item in batch])
                rows = []
                for item in batch:
                    if item.cnvd_id in exists:
                        continue
                    exists.add(item.cnvd_id)
                    row = item.to_dict()
                    row['published_date'] = row.pop('publishedDate')
                    rows.append(row)
                if rows:
                    self.session.execute(query, rows)
                saved += len(rows)
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise CNVDError(f'写入数据库失败: {e}') from e
        print(f'[{get_current_time()}][+] 数据库新增 {saved} 条，已存在 {len(items) - saved} 条')
        return saved

    def close(self):
        """关闭数据库连接"""
        self.session.close()
        self.engine.dispose()
        print(f'[{get_current_time()}][+] 数据库连接已关闭')
